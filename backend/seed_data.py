"""Seed database with demo data."""
from app.database import Base, SessionLocal, engine
from app.models import User, Task, TaskActivity
from app.auth import get_password_hash
from app.services.task_progress import compute_progress, status_for_progress
from datetime import datetime, timedelta, timezone
import uuid


def seed():
    """Create tables and seed demo users and tasks."""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()

    try:
        # Create users
        users_data = [
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000101'),
                'email': 'admin@acme.test',
                'password': 'admin123',
                'name': 'Alice Admin',
                'role': 'admin'
            },
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000102'),
                'email': 'bob@acme.test',
                'password': 'bob12345',
                'name': 'Bob Builder',
                'role': 'member'
            },
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000103'),
                'email': 'carol@acme.test',
                'password': 'carol123',
                'name': 'Carol Chen',
                'role': 'member'
            },
        ]

        users = []
        for user_data in users_data:
            password = user_data.pop('password')
            user = User(
                password_hash=get_password_hash(password),
                is_email_verified=True,
                account_status='active',
                **user_data
            )
            db.add(user)
            users.append(user)

        db.flush()

        now = datetime.now(timezone.utc)
        tasks_data = [
            {
                'title': 'Prepare quarterly report',
                'description': 'Collect numbers from every team and draft the summary',
                'priority': 'High',
                'due_date': now + timedelta(hours=20),
                'assignees': [users[1]],
                'checklist': [
                    {'text': 'Collect numbers', 'completed': True},
                    {'text': 'Draft summary', 'completed': False},
                    {'text': 'Review with finance', 'completed': False},
                ],
                'labels': ['finance'],
            },
            {
                'title': 'Onboard new designer',
                'description': 'Accounts, laptop and intro meetings',
                'priority': 'Medium',
                'due_date': now + timedelta(days=5),
                'assignees': [users[1], users[2]],
                'checklist': [
                    {'text': 'Create accounts', 'completed': True},
                    {'text': 'Order laptop', 'completed': True},
                ],
                'labels': ['hr', 'onboarding'],
            },
            {
                'title': 'Clean up shared drive',
                'description': 'Archive folders older than two years',
                'priority': 'Low',
                'due_date': now + timedelta(days=14),
                'assignees': [users[2]],
                'checklist': [],
                'labels': [],
            },
        ]

        for task_data in tasks_data:
            assignees = task_data.pop('assignees')
            _completed, _total, progress = compute_progress(task_data['checklist'])
            task = Task(
                id=uuid.uuid4(),
                creator_id=users[0].id,
                attachments=[],
                progress=progress,
                status=status_for_progress(progress),
                **task_data
            )
            task.assignees = assignees
            db.add(task)
            db.add(TaskActivity(
                task_id=task.id,
                user_id=users[0].id,
                action='created',
                details=f'Task "{task.title}" created',
            ))

        db.commit()
        print("Database seeded successfully!")
        print("\nDemo users:")
        print("  admin@acme.test/admin123 (Admin)")
        print("  bob@acme.test/bob12345 (Member)")
        print("  carol@acme.test/carol123 (Member)")

    except Exception as e:
        db.rollback()
        print(f"Error seeding database: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed()
