from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from attendance_engine.db import get_db
from attendance_engine.models import LeaveStatus
from attendance_engine.schemas import LeaveCreateRequest, LeaveRead, LeaveReviewRequest
from attendance_engine.security import AuthContext, Capability, require_auth
from attendance_engine.services.leaves import (
    approve_leave,
    create_leave,
    delete_leave,
    list_leaves,
    reject_leave,
)

router = APIRouter(prefix="/api/leaves", tags=["leaves"])


@router.post("", response_model=LeaveRead, status_code=status.HTTP_201_CREATED)
def create(
    payload: LeaveCreateRequest,
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
) -> LeaveRead:
    return create_leave(
        db,
        auth,
        user_id=payload.user_id,
        leave_type=payload.type,
        start_date=payload.start_date,
        end_date=payload.end_date,
        reason=payload.reason,
    )


@router.get("", response_model=list[LeaveRead])
def list_all(
    user_id: int | None = Query(default=None, ge=1),
    leave_status: LeaveStatus | None = Query(default=None, alias="status"),
    year: int | None = Query(default=None, ge=2000, le=2100),
    month: int | None = Query(default=None, ge=1, le=12),
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
) -> list[LeaveRead]:
    if not auth.can(Capability.MANAGE_LEAVES):
        user_id = auth.user_id
    return list_leaves(db, auth, user_id=user_id, status=leave_status, year=year, month=month)


@router.post("/{leave_id}/approve", response_model=LeaveRead)
def approve(
    leave_id: int,
    payload: LeaveReviewRequest,
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
) -> LeaveRead:
    return approve_leave(db, auth, leave_id, note=payload.note)


@router.post("/{leave_id}/reject", response_model=LeaveRead)
def reject(
    leave_id: int,
    payload: LeaveReviewRequest,
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
) -> LeaveRead:
    return reject_leave(db, auth, leave_id, note=payload.note)


@router.delete("/{leave_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete(
    leave_id: int,
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
) -> Response:
    delete_leave(db, auth, leave_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
