from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class _LifecycleError(ApiError):
    status_code_default = 409
    code_default = "INVALID_TRANSITION"
    message_default = "Absence transition is not allowed."

    def __init__(self, message: str | None = None, *, absence_id: int | None = None):
        super().__init__(
            status_code=self.status_code_default,
            code=self.code_default,
            message=message or self.message_default,
        )
        self.absence_id = absence_id


class AbsenceNotFoundError(_LifecycleError):
    status_code_default = 404
    code_default = "ABSENCE_NOT_FOUND"
    message_default = "Absence record not found."


class AbsenceNotOwnedError(_LifecycleError):
    status_code_default = 403
    code_default = "ABSENCE_NOT_OWNED"
    message_default = "You can only justify your own absences."


class AbsenceAlreadyJustifiedError(_LifecycleError):
    code_default = "ABSENCE_ALREADY_JUSTIFIED"
    message_default = "Absence has already been justified."


class AbsenceAlreadyReviewedError(_LifecycleError):
    code_default = "ABSENCE_ALREADY_REVIEWED"
    message_default = "Absence has already been reviewed."


class AbsenceNotJustifiedError(_LifecycleError):
    code_default = "ABSENCE_NOT_JUSTIFIED"
    message_default = "Absence must be justified by the worker before review."


class ReviewForbiddenError(_LifecycleError):
    status_code_default = 403
    code_default = "REVIEW_FORBIDDEN"
    message_default = "Insufficient permissions to review absences."


class ReviewOutOfScopeError(_LifecycleError):
    status_code_default = 403
    code_default = "REVIEW_OUT_OF_SCOPE"
    message_default = "You can only review absences of your own team."


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
