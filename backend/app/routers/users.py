"""User endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from uuid import UUID
from ..config import EngineConfig, get_engine_config
from ..database import get_db
from ..models import User
from ..schemas import MemberWithCounts, UserResponse
from ..auth import PermissionChecker, get_current_user
from ..use_cases.org_members import get_org_member_use_case, list_org_members_use_case

router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=list[MemberWithCounts])
def get_users(
    current_user: User = Depends(PermissionChecker("canViewMembers")),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
):
    """Get organization members with task counts."""
    members = list_org_members_use_case(db=db, current_user=current_user, config=config)
    return [
        MemberWithCounts(
            **UserResponse.model_validate(row["user"]).model_dump(),
            pending_tasks=row["pending_tasks"],
            in_progress_tasks=row["in_progress_tasks"],
            completed_tasks=row["completed_tasks"],
        )
        for row in members
    ]


@router.get("/{user_id}", response_model=UserResponse)
def get_user(
    user_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
):
    """Get user by ID."""
    user = get_org_member_use_case(db=db, user_id=user_id, current_user=current_user, config=config)
    return UserResponse.model_validate(user)
