"""Report export endpoints."""
from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from ..auth import PermissionChecker
from ..config import EngineConfig, get_engine_config
from ..database import get_db
from ..models import User
from ..services.reports import (
    XLSX_MEDIA_TYPE,
    export_tasks_report,
    export_team_productivity_report,
    export_users_report,
)

router = APIRouter(prefix="/reports", tags=["reports"])


def _xlsx(content: bytes, filename: str) -> Response:
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/export/tasks")
def export_tasks(
    current_user: User = Depends(PermissionChecker("canExportReports")),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
):
    """Export organization tasks as an Excel workbook."""
    return _xlsx(export_tasks_report(db=db, current_user=current_user, config=config), "tasks_report.xlsx")


@router.get("/export/users")
def export_users(
    current_user: User = Depends(PermissionChecker("canExportReports")),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
):
    """Export organization members with task counts as an Excel workbook."""
    return _xlsx(export_users_report(db=db, current_user=current_user, config=config), "users_report.xlsx")


@router.get("/export/team-productivity")
def export_team_productivity(
    current_user: User = Depends(PermissionChecker("canExportReports")),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
):
    """Export per-member completion statistics as an Excel workbook."""
    report = export_team_productivity_report(db=db, current_user=current_user, config=config)
    return _xlsx(report, "team_productivity_report.xlsx")
