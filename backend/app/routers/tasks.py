"""Task endpoints."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..auth import PermissionChecker, get_current_user
from ..config import EngineConfig, get_engine_config, settings
from ..database import get_db
from ..models import User
from ..schemas import (
    DashboardResponse,
    MemberProductivity,
    MessageResponse,
    ProductivityStats,
    RecentTask,
    ReminderRunResponse,
    TaskActivityResponse,
    TaskChecklistUpdate,
    TaskCommentCreate,
    TaskCommentResponse,
    TaskCreate,
    TaskDetailResponse,
    TaskLabelsAdd,
    TaskListResponse,
    TaskResponse,
    TaskStatusUpdate,
    TaskUpdate,
    TeamProductivityResponse,
    UserBrief,
)
from ..services.notifier import Notifier, get_notifier
from ..services.task_response_builder import (
    activity_to_response,
    comments_to_response,
    task_to_detail_response,
    task_to_response,
    tasks_to_response,
)
from ..use_cases.reminders import send_task_reminder_use_case, trigger_org_reminders_use_case
from ..use_cases.task_queries import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    admin_dashboard_use_case,
    get_task_use_case,
    list_labels_use_case,
    list_tasks_use_case,
    productivity_stats_use_case,
    search_tasks_use_case,
    task_activity_use_case,
    task_comments_use_case,
    team_productivity_use_case,
    user_dashboard_use_case,
)
from ..use_cases.task_transitions import (
    add_comment_use_case,
    add_labels_use_case,
    create_task_use_case,
    delete_comment_use_case,
    delete_task_use_case,
    duplicate_task_use_case,
    remove_label_use_case,
    update_task_checklist_use_case,
    update_task_status_use_case,
    update_task_use_case,
)

router = APIRouter(prefix="/tasks", tags=["tasks"])


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _dashboard_response(data: dict) -> DashboardResponse:
    return DashboardResponse(
        statistics=data["statistics"],
        charts=data["charts"],
        recent_tasks=[RecentTask.model_validate(task, from_attributes=True) for task in data["recent_tasks"]],
    )


@router.get("", response_model=TaskListResponse)
def get_tasks(
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    sort_by: str = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
):
    """Get tasks visible to the current user."""
    result = list_tasks_use_case(
        db=db,
        current_user=current_user,
        config=config,
        status=status,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return TaskListResponse(
        tasks=tasks_to_response(result["tasks"]),
        total=result["total"],
        page=result["page"],
        limit=result["limit"],
        status_summary=result["status_summary"],
    )


@router.get("/search", response_model=TaskListResponse)
def search_tasks(
    q: Optional[str] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    assignee: Optional[UUID] = None,
    due_date_from: Optional[datetime] = None,
    due_date_to: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
):
    """Search tasks by text, status, priority, assignee and due date."""
    result = search_tasks_use_case(
        db=db,
        current_user=current_user,
        config=config,
        q=q,
        status=status,
        priority=priority,
        assignee_id=assignee,
        due_from=due_date_from,
        due_to=due_date_to,
        page=page,
        limit=limit,
    )
    tasks = result["tasks"]
    return TaskListResponse(
        tasks=tasks_to_response(tasks),
        total=result["total"],
        page=result["page"],
        limit=result["limit"],
        status_summary=result["status_summary"],
    )


@router.get(
    "/dashboard-data",
    response_model=DashboardResponse,
    dependencies=[Depends(PermissionChecker("canViewOrgDashboard"))],
)
def get_dashboard_data(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
):
    """Organization dashboard for admins."""
    return _dashboard_response(admin_dashboard_use_case(db=db, current_user=current_user, config=config))


@router.get("/user-dashboard-data", response_model=DashboardResponse)
def get_user_dashboard_data(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Dashboard over the current user's assignments."""
    return _dashboard_response(user_dashboard_use_case(db=db, current_user=current_user))


@router.get("/productivity-stats", response_model=ProductivityStats)
def get_productivity_stats(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Completion statistics over the current user's assignments."""
    return ProductivityStats(**productivity_stats_use_case(db=db, current_user=current_user))


@router.get(
    "/team-productivity-stats",
    response_model=TeamProductivityResponse,
    dependencies=[Depends(PermissionChecker("canViewOrgDashboard"))],
)
def get_team_productivity_stats(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
):
    """Per-member completion statistics for the admin's organization."""
    result = team_productivity_use_case(db=db, current_user=current_user, config=config)
    return TeamProductivityResponse(
        team=ProductivityStats(**result["team"]),
        members=[
            MemberProductivity(**{**row, "user": UserBrief.model_validate(row["user"])})
            for row in result["members"]
        ],
    )


@router.get("/labels/all", response_model=list[str])
def get_all_labels(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
):
    """Distinct labels over visible tasks."""
    return list_labels_use_case(db=db, current_user=current_user, config=config)


@router.post(
    "/reminders/trigger",
    response_model=ReminderRunResponse,
    dependencies=[Depends(PermissionChecker("canSendReminders"))],
)
def trigger_reminders(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
    notifier: Notifier = Depends(get_notifier),
):
    """Send due-date reminders for the organization now."""
    return trigger_org_reminders_use_case(
        db=db,
        current_user=current_user,
        config=config,
        now=_utc_now(),
        window_hours=settings.REMINDER_WINDOW_HOURS,
        notifier=notifier,
    )


@router.post(
    "",
    response_model=TaskResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(PermissionChecker("canCreateTasks"))],
)
def create_task(
    data: TaskCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
):
    """Create task."""
    task = create_task_use_case(db=db, current_user=current_user, payload=data, config=config)
    return task_to_response(task)


@router.get("/{task_id}", response_model=TaskDetailResponse)
def get_task(
    task_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
):
    """Get task by ID with comments and activity."""
    task = get_task_use_case(db=db, task_id=task_id, current_user=current_user, config=config)
    return task_to_detail_response(db, task, list(task.comments), list(task.activity))


@router.put("/{task_id}", response_model=TaskResponse)
def update_task(
    task_id: UUID,
    data: TaskUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
):
    """Update task fields."""
    task = update_task_use_case(db=db, task_id=task_id, current_user=current_user, payload=data, config=config)
    return task_to_response(task)


@router.delete("/{task_id}", response_model=MessageResponse)
def delete_task(
    task_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
):
    """Delete task."""
    delete_task_use_case(db=db, task_id=task_id, current_user=current_user, config=config)
    return MessageResponse(message="Task deleted successfully")


@router.put("/{task_id}/status", response_model=TaskResponse)
def update_task_status(
    task_id: UUID,
    data: TaskStatusUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
):
    """Set task status."""
    task = update_task_status_use_case(
        db=db, task_id=task_id, current_user=current_user, status=data.status, config=config
    )
    return task_to_response(task)


@router.put("/{task_id}/todo", response_model=TaskResponse)
def update_task_checklist(
    task_id: UUID,
    data: TaskChecklistUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
):
    """Replace the task checklist."""
    task = update_task_checklist_use_case(
        db=db, task_id=task_id, current_user=current_user, checklist=data.checklist, config=config
    )
    return task_to_response(task)


@router.post("/{task_id}/duplicate", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
def duplicate_task(
    task_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
):
    """Duplicate task."""
    task = duplicate_task_use_case(db=db, task_id=task_id, current_user=current_user, config=config)
    return task_to_response(task)


@router.post("/{task_id}/send-reminder", response_model=ReminderRunResponse)
def send_task_reminder(
    task_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
    notifier: Notifier = Depends(get_notifier),
):
    """Remind the assignees of one task."""
    return send_task_reminder_use_case(
        db=db,
        task_id=task_id,
        current_user=current_user,
        config=config,
        now=_utc_now(),
        notifier=notifier,
    )


@router.get("/{task_id}/comments", response_model=list[TaskCommentResponse])
def get_task_comments(
    task_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
):
    """List task comments."""
    comments = task_comments_use_case(db=db, task_id=task_id, current_user=current_user, config=config)
    return comments_to_response(db, comments)


@router.post("/{task_id}/comments", response_model=TaskCommentResponse, status_code=status.HTTP_201_CREATED)
def add_task_comment(
    task_id: UUID,
    data: TaskCommentCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
    notifier: Notifier = Depends(get_notifier),
):
    """Add comment to task."""
    comment = add_comment_use_case(
        db=db,
        task_id=task_id,
        current_user=current_user,
        text=data.text,
        mentions=data.mentions,
        config=config,
        notifier=notifier,
    )
    return comments_to_response(db, [comment])[0]


@router.delete("/{task_id}/comments/{comment_id}", response_model=MessageResponse)
def delete_task_comment(
    task_id: UUID,
    comment_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
):
    """Delete a comment (author or admin)."""
    delete_comment_use_case(
        db=db, task_id=task_id, comment_id=comment_id, current_user=current_user, config=config
    )
    return MessageResponse(message="Comment deleted successfully")


@router.get("/{task_id}/activity", response_model=list[TaskActivityResponse])
def get_task_activity(
    task_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
):
    """Task activity log, oldest first."""
    entries = task_activity_use_case(db=db, task_id=task_id, current_user=current_user, config=config)
    return activity_to_response(db, entries)


@router.post("/{task_id}/labels", response_model=TaskResponse)
def add_task_labels(
    task_id: UUID,
    data: TaskLabelsAdd,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
):
    """Add labels to task."""
    task = add_labels_use_case(db=db, task_id=task_id, current_user=current_user, labels=data.labels, config=config)
    return task_to_response(task)


@router.delete("/{task_id}/labels/{label}", response_model=TaskResponse)
def remove_task_label(
    task_id: UUID,
    label: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
):
    """Remove a label from task."""
    task = remove_label_use_case(db=db, task_id=task_id, current_user=current_user, label=label, config=config)
    return task_to_response(task)
