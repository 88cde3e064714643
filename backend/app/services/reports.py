"""Excel exports of organization tasks, members and team productivity."""

from __future__ import annotations

from io import BytesIO

import pandas as pd
from sqlalchemy.orm import Session

from ..config import EngineConfig
from ..models import Task, User
from ..security import apply_task_visibility_scope, email_in_domain, ensure_admin_org
from ..use_cases.org_members import org_users_query, task_counts_by_user
from ..use_cases.task_queries import team_productivity_use_case

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

TASK_COLUMNS = ["Task ID", "Title", "Description", "Priority", "Status", "Due Date", "Assigned To"]
USER_COLUMNS = [
    "User Name",
    "Email",
    "Total Assigned Tasks",
    "Pending Tasks",
    "In Progress Tasks",
    "Completed Tasks",
]
PRODUCTIVITY_COLUMNS = [
    "User Name",
    "Email",
    "Total Tasks",
    "Completed Tasks",
    "In Progress Tasks",
    "Pending Tasks",
    "Overdue Tasks",
    "Completion Rate (%)",
]


def _to_xlsx(frame: pd.DataFrame, sheet_name: str) -> bytes:
    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        frame.to_excel(writer, sheet_name=sheet_name, index=False)
    return buffer.getvalue()


def task_report_rows(tasks: list[Task], domain: str) -> list[dict]:
    rows = []
    for task in tasks:
        members = [user for user in task.assignees if email_in_domain(user.email, domain)]
        if not members:
            continue
        rows.append(
            {
                "Task ID": str(task.id),
                "Title": task.title,
                "Description": task.description or "",
                "Priority": task.priority,
                "Status": task.status,
                "Due Date": task.due_date.date().isoformat() if task.due_date else "",
                "Assigned To": ", ".join(f"{user.name} ({user.email})" for user in members),
            }
        )
    return rows


def export_tasks_report(*, db: Session, current_user: User, config: EngineConfig) -> bytes:
    domain = ensure_admin_org(current_user, config)
    tasks = (
        apply_task_visibility_scope(db.query(Task), current_user, config)
        .order_by(Task.created_at.desc())
        .all()
    )
    frame = pd.DataFrame(task_report_rows(tasks, domain), columns=TASK_COLUMNS)
    return _to_xlsx(frame, "Tasks Report")


def export_users_report(*, db: Session, current_user: User, config: EngineConfig) -> bytes:
    domain = ensure_admin_org(current_user, config)
    users = org_users_query(db, domain).order_by(User.name).all()
    counts = task_counts_by_user(db, [user.id for user in users])
    rows = []
    for user in users:
        by_status = counts.get(user.id, {})
        rows.append(
            {
                "User Name": user.name,
                "Email": user.email,
                "Total Assigned Tasks": sum(by_status.values()),
                "Pending Tasks": by_status.get("Pending", 0),
                "In Progress Tasks": by_status.get("In Progress", 0),
                "Completed Tasks": by_status.get("Completed", 0),
            }
        )
    return _to_xlsx(pd.DataFrame(rows, columns=USER_COLUMNS), "User Task Report")


def export_team_productivity_report(*, db: Session, current_user: User, config: EngineConfig) -> bytes:
    stats = team_productivity_use_case(db=db, current_user=current_user, config=config)
    rows = [
        {
            "User Name": member["user"].name,
            "Email": member["user"].email,
            "Total Tasks": member["total_tasks"],
            "Completed Tasks": member["completed_tasks"],
            "In Progress Tasks": member["in_progress_tasks"],
            "Pending Tasks": member["pending_tasks"],
            "Overdue Tasks": member["overdue_tasks"],
            "Completion Rate (%)": member["completion_rate"],
        }
        for member in stats["members"]
    ]
    return _to_xlsx(pd.DataFrame(rows, columns=PRODUCTIVITY_COLUMNS), "Team Productivity")
