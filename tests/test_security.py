from __future__ import annotations

import os
import unittest
from unittest.mock import patch

from attendance_engine.errors import ApiError
from attendance_engine.models import UserRole
from attendance_engine.security import (
    AuthContext,
    Capability,
    auth_context_from_claims,
    create_access_token,
    decode_token,
    require_capability,
    resolve_capabilities,
)
from attendance_engine.settings import get_settings


class CapabilityTests(unittest.TestCase):
    def test_role_capabilities(self) -> None:
        self.assertEqual(resolve_capabilities(UserRole.WORKER), frozenset())
        self.assertIn(Capability.REVIEW_TEAM_ABSENCES, resolve_capabilities(UserRole.TEAM_LEAD))
        self.assertNotIn(Capability.REVIEW_ANY_ABSENCE, resolve_capabilities(UserRole.TEAM_LEAD))
        self.assertIn(Capability.REVIEW_ANY_ABSENCE, resolve_capabilities(UserRole.SUPERVISOR))
        self.assertIn(Capability.RUN_FINALIZER, resolve_capabilities(UserRole.EXECUTIVE))
        self.assertEqual(resolve_capabilities(UserRole.ADMIN), frozenset(Capability))
        self.assertEqual(resolve_capabilities("JANITOR"), frozenset())

    def test_clinician_reads_analytics_but_cannot_review(self) -> None:
        auth = AuthContext.for_role(user_id=1, company_id=1, role="CLINICIAN")
        self.assertTrue(auth.can(Capability.VIEW_COMPANY_ANALYTICS))
        self.assertFalse(auth.can(Capability.REVIEW_TEAM_ABSENCES))
        self.assertGreater(auth.level, AuthContext.for_role(user_id=2, company_id=1, role="WORKER").level)

    def test_require_capability_rejects_missing_capability(self) -> None:
        dependency = require_capability(Capability.RUN_FINALIZER)
        lead = AuthContext.for_role(user_id=3, company_id=1, role=UserRole.TEAM_LEAD)
        admin = AuthContext.for_role(user_id=4, company_id=1, role=UserRole.ADMIN)

        with self.assertRaises(ApiError) as ctx:
            dependency(auth=lead)
        self.assertEqual(ctx.exception.status_code, 403)
        self.assertIs(dependency(auth=admin), admin)


class TokenTests(unittest.TestCase):
    def setUp(self) -> None:
        get_settings.cache_clear()

    def tearDown(self) -> None:
        get_settings.cache_clear()

    def test_access_token_roundtrip(self) -> None:
        with patch.dict(os.environ, {"JWT_SECRET": "token-test-secret"}, clear=False):
            get_settings.cache_clear()
            token, expires_in, _ = create_access_token(user_id=7, company_id=2, role=UserRole.TEAM_LEAD, team_id=5)
            auth = auth_context_from_claims(decode_token(token))

        self.assertEqual(expires_in, 30 * 60)
        self.assertEqual(auth.user_id, 7)
        self.assertEqual(auth.company_id, 2)
        self.assertEqual(auth.team_id, 5)
        self.assertTrue(auth.can(Capability.REVIEW_TEAM_ABSENCES))

    def test_token_signed_with_another_secret_is_rejected(self) -> None:
        with patch.dict(os.environ, {"JWT_SECRET": "first-secret"}, clear=False):
            get_settings.cache_clear()
            token, _, _ = create_access_token(user_id=7, company_id=2, role=UserRole.WORKER)
        with patch.dict(os.environ, {"JWT_SECRET": "second-secret"}, clear=False):
            get_settings.cache_clear()
            with self.assertRaises(ApiError) as ctx:
                decode_token(token)

        self.assertEqual(ctx.exception.code, "INVALID_TOKEN")

    def test_claims_with_unknown_role_are_rejected(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            auth_context_from_claims({"sub": "1", "company_id": 1, "role": "JANITOR"})
        self.assertEqual(ctx.exception.status_code, 401)


if __name__ == "__main__":
    unittest.main()
