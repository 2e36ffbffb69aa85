"""Staff directory - read-only lookups of users by role"""

from typing import Optional

from sqlalchemy.orm import Session

from ...config import CUSTOMER
from ...models import User


class StaffRepository:
    """Repository for staff and customer lookups"""

    @staticmethod
    def list_active(db: Session, role: str) -> list[User]:
        """Active users holding ``role``, in the stable order used for auto-assignment"""
        return (
            db.query(User)
            .filter(User.role == role, User.is_active.is_(True))
            .order_by(User.id)
            .all()
        )

    @staticmethod
    def get_active(db: Session, user_id: int, role: str) -> Optional[User]:
        """Get an active user by ID, only if they hold ``role``"""
        return (
            db.query(User)
            .filter(User.id == user_id, User.role == role, User.is_active.is_(True))
            .first()
        )

    @staticmethod
    def get_active_many(db: Session, user_ids: list[int], role: str) -> list[User]:
        return (
            db.query(User)
            .filter(User.id.in_(user_ids), User.role == role, User.is_active.is_(True))
            .all()
        )

    @staticmethod
    def get_customer(db: Session, user_id: int) -> Optional[User]:
        return db.query(User).filter(User.id == user_id, User.role == CUSTOMER).first()

    @staticmethod
    def get_user(db: Session, user_id: Optional[int]) -> Optional[User]:
        if user_id is None:
            return None
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def lock_staff(db: Session, user_id: int) -> Optional[User]:
        """Re-select a staff row FOR UPDATE, serializing slot writes for that staff member"""
        return db.query(User).filter(User.id == user_id).with_for_update().first()
