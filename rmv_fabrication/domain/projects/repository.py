"""Project repository - Database operations for projects"""

from typing import Optional

from sqlalchemy.orm import Session, selectinload

from ...models import Project, User


class ProjectRepository:
    """Repository for project database operations"""

    @staticmethod
    def get_project(db: Session, project_id: int) -> Optional[Project]:
        """Get a project by ID with its payments, ignoring soft-deleted rows"""
        return (
            db.query(Project)
            .options(selectinload(Project.payments))
            .filter(Project.id == project_id, Project.is_deleted.is_(False))
            .first()
        )

    @staticmethod
    def next_project_number(db: Session, year: int) -> str:
        """RMV-YYYY-#### where #### is one past the projects already numbered this year"""
        prefix = f"RMV-{year}-"
        count = db.query(Project).filter(Project.project_number.like(f"{prefix}%")).count()
        return f"{prefix}{count + 1:04d}"

    @staticmethod
    def get_for_customer(db: Session, customer_id: int) -> list[Project]:
        return (
            db.query(Project)
            .filter(Project.customer_id == customer_id, Project.is_deleted.is_(False))
            .order_by(Project.created_at.desc(), Project.id.desc())
            .all()
        )

    @staticmethod
    def get_for_engineer(db: Session, engineer_id: int, statuses: tuple[str, ...]) -> list[Project]:
        return (
            db.query(Project)
            .filter(
                Project.assigned_engineer_id == engineer_id,
                Project.status.in_(statuses),
                Project.is_deleted.is_(False),
            )
            .order_by(Project.id)
            .all()
        )

    @staticmethod
    def get_for_fabrication_staff(db: Session, staff_id: int) -> list[Project]:
        """Projects whose fabrication crew includes ``staff_id``"""
        return (
            db.query(Project)
            .filter(Project.is_deleted.is_(False), Project.fabrication_staff.any(User.id == staff_id))
            .order_by(Project.id)
            .all()
        )
