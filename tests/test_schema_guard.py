from __future__ import annotations

import unittest
from unittest.mock import patch

from attendance_engine.services.schema_guard import REQUIRED_TABLE_COLUMNS, verify_runtime_schema


class _FakeResult:
    def __init__(self, value):
        self._value = value

    def scalar(self):  # type: ignore[no-untyped-def]
        return self._value


class _FakeConnection:
    def __init__(self, version_value):
        self._version_value = version_value

    def __enter__(self):  # type: ignore[no-untyped-def]
        return self

    def __exit__(self, exc_type, exc, tb):  # type: ignore[no-untyped-def]
        return False

    def execute(self, _statement):  # type: ignore[no-untyped-def]
        return _FakeResult(self._version_value)


class _FakeEngine:
    def __init__(self, version_value):
        self._version_value = version_value

    def connect(self):  # type: ignore[no-untyped-def]
        return _FakeConnection(self._version_value)


class _FakeInspector:
    def __init__(self, *, columns_by_table: dict[str, set[str]], enums: list[dict[str, object]]):
        self._columns_by_table = columns_by_table
        self._enums = enums

    def get_columns(self, table_name: str):  # type: ignore[no-untyped-def]
        columns = self._columns_by_table[table_name]
        return [{"name": item} for item in columns]

    def get_enums(self):  # type: ignore[no-untyped-def]
        return self._enums


class _FakeInspectorWithoutEnums:
    def __init__(self, *, columns_by_table: dict[str, set[str]]):
        self._columns_by_table = columns_by_table

    def get_columns(self, table_name: str):  # type: ignore[no-untyped-def]
        return [{"name": item} for item in self._columns_by_table[table_name]]


FULL_ENUMS = [
    {"name": "attendance_status", "labels": ["GREEN", "RED", "YELLOW", "ABSENT", "EXCUSED"]},
    {"name": "absence_status", "labels": ["PENDING_JUSTIFICATION", "EXCUSED", "UNEXCUSED"]},
]


class SchemaGuardTests(unittest.TestCase):
    def test_verify_runtime_schema_ok_when_required_columns_exist(self) -> None:
        fake_inspector = _FakeInspector(
            columns_by_table={name: set(columns) for name, columns in REQUIRED_TABLE_COLUMNS.items()},
            enums=FULL_ENUMS,
        )

        with patch("attendance_engine.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(_FakeEngine("0001_initial"))  # type: ignore[arg-type]

        self.assertTrue(result.ok)
        self.assertEqual(result.issues, [])
        self.assertEqual(result.warnings, [])

    def test_verify_runtime_schema_reports_missing_columns(self) -> None:
        columns = {name: set(columns) for name, columns in REQUIRED_TABLE_COLUMNS.items()}
        columns["absences"].discard("justified_at")
        columns["daily_attendance"] -= {"is_counted", "score"}
        fake_inspector = _FakeInspector(
            columns_by_table=columns,
            enums=[
                {"name": "attendance_status", "labels": ["GREEN", "ABSENT"]},
            ],
        )

        with patch("attendance_engine.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(_FakeEngine(""))  # type: ignore[arg-type]

        self.assertFalse(result.ok)
        self.assertIn("MISSING_COLUMNS:absences:justified_at", result.issues)
        self.assertIn("MISSING_COLUMNS:daily_attendance:is_counted,score", result.issues)
        self.assertIn("MISSING_ENUM_VALUES:attendance_status:EXCUSED", result.issues)
        self.assertIn("ENUM_NOT_FOUND:absence_status", result.warnings)
        self.assertIn("ALEMBIC_VERSION_EMPTY", result.issues)

    def test_enum_checks_are_skipped_for_backends_without_named_enums(self) -> None:
        fake_inspector = _FakeInspectorWithoutEnums(
            columns_by_table={name: set(columns) for name, columns in REQUIRED_TABLE_COLUMNS.items()},
        )

        with patch("attendance_engine.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(_FakeEngine("0001_initial"))  # type: ignore[arg-type]

        self.assertTrue(result.ok)
        self.assertEqual(result.warnings, ["ENUM_INSPECTION_UNSUPPORTED"])
        self.assertEqual(result.to_dict()["warning_count"], 1)


if __name__ == "__main__":
    unittest.main()
