from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from uuid import uuid4

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from attendance_engine.errors import ApiError
from attendance_engine.models import UserRole
from attendance_engine.settings import get_settings

bearer_scheme = HTTPBearer(auto_error=False)


class Capability(str, enum.Enum):
    REVIEW_TEAM_ABSENCES = "review_team_absences"
    REVIEW_ANY_ABSENCE = "review_any_absence"
    MANAGE_LEAVES = "manage_leaves"
    VIEW_TEAM_ANALYTICS = "view_team_analytics"
    VIEW_COMPANY_ANALYTICS = "view_company_analytics"
    RECALCULATE_SUMMARIES = "recalculate_summaries"
    RUN_FINALIZER = "run_finalizer"


ROLE_LEVELS: dict[UserRole, int] = {
    UserRole.ADMIN: 6,
    UserRole.EXECUTIVE: 5,
    UserRole.SUPERVISOR: 4,
    UserRole.CLINICIAN: 4,
    UserRole.WHS_CONTROL: 4,
    UserRole.TEAM_LEAD: 3,
    UserRole.WORKER: 2,
    UserRole.MEMBER: 2,
}

_WORKER_CAPABILITIES: frozenset[Capability] = frozenset()
_TEAM_LEAD_CAPABILITIES = frozenset(
    {
        Capability.REVIEW_TEAM_ABSENCES,
        Capability.MANAGE_LEAVES,
        Capability.VIEW_TEAM_ANALYTICS,
    }
)
_SUPERVISOR_CAPABILITIES = _TEAM_LEAD_CAPABILITIES | {
    Capability.REVIEW_ANY_ABSENCE,
    Capability.VIEW_COMPANY_ANALYTICS,
}
_EXECUTIVE_CAPABILITIES = _SUPERVISOR_CAPABILITIES | {
    Capability.RECALCULATE_SUMMARIES,
    Capability.RUN_FINALIZER,
}

ROLE_CAPABILITIES: dict[UserRole, frozenset[Capability]] = {
    UserRole.ADMIN: frozenset(Capability),
    UserRole.EXECUTIVE: _EXECUTIVE_CAPABILITIES,
    UserRole.SUPERVISOR: _SUPERVISOR_CAPABILITIES,
    UserRole.CLINICIAN: frozenset({Capability.VIEW_TEAM_ANALYTICS, Capability.VIEW_COMPANY_ANALYTICS}),
    UserRole.WHS_CONTROL: frozenset({Capability.VIEW_TEAM_ANALYTICS, Capability.VIEW_COMPANY_ANALYTICS}),
    UserRole.TEAM_LEAD: _TEAM_LEAD_CAPABILITIES,
    UserRole.WORKER: _WORKER_CAPABILITIES,
    UserRole.MEMBER: _WORKER_CAPABILITIES,
}


def resolve_capabilities(role: UserRole | str) -> frozenset[Capability]:
    try:
        resolved = UserRole(role)
    except ValueError:
        return frozenset()
    return ROLE_CAPABILITIES.get(resolved, frozenset())


@dataclass(frozen=True, slots=True)
class AuthContext:
    """Caller identity with its role already resolved to capabilities."""

    user_id: int
    company_id: int
    role: UserRole
    team_id: int | None = None
    capabilities: frozenset[Capability] = frozenset()

    @classmethod
    def for_role(
        cls,
        *,
        user_id: int,
        company_id: int,
        role: UserRole | str,
        team_id: int | None = None,
    ) -> AuthContext:
        resolved_role = UserRole(role)
        return cls(
            user_id=user_id,
            company_id=company_id,
            role=resolved_role,
            team_id=team_id,
            capabilities=resolve_capabilities(resolved_role),
        )

    @property
    def level(self) -> int:
        return ROLE_LEVELS.get(self.role, 0)

    def can(self, capability: Capability) -> bool:
        return capability in self.capabilities


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_access_token(
    *,
    user_id: int,
    company_id: int,
    role: UserRole | str,
    team_id: int | None = None,
) -> tuple[str, int, dict[str, Any]]:
    settings = get_settings()
    now = _utcnow()
    exp = now + timedelta(minutes=settings.access_token_minutes)
    claims = {
        "sub": str(user_id),
        "company_id": company_id,
        "role": UserRole(role).value,
        "team_id": team_id,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
        "jti": str(uuid4()),
        "typ": "access",
    }
    token = jwt.encode(claims, settings.jwt_secret, algorithm="HS256")
    return token, settings.access_token_minutes * 60, claims


def decode_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_iat": True, "require_exp": True},
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token is invalid.") from exc

    if payload.get("typ") != "access":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token type is invalid.")
    return payload


def auth_context_from_claims(claims: dict[str, Any]) -> AuthContext:
    try:
        user_id = int(claims["sub"])
        company_id = int(claims["company_id"])
        role = UserRole(str(claims.get("role") or ""))
    except (KeyError, TypeError, ValueError) as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token claims are invalid.") from exc

    raw_team_id = claims.get("team_id")
    return AuthContext.for_role(
        user_id=user_id,
        company_id=company_id,
        role=role,
        team_id=int(raw_team_id) if raw_team_id is not None else None,
    )


def require_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> AuthContext:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")

    auth = auth_context_from_claims(decode_token(credentials.credentials))
    request.state.actor = auth.role.value
    request.state.actor_id = str(auth.user_id)
    return auth


def require_capability(capability: Capability) -> Callable[..., AuthContext]:
    def _dependency(auth: AuthContext = Depends(require_auth)) -> AuthContext:
        if not auth.can(capability):
            raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")
        return auth

    return _dependency
