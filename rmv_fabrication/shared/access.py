"""Caller context and capability checks shared by the workflow engines"""

from dataclasses import dataclass

from ..config import CUSTOMER
from ..errors import ForbiddenError


@dataclass(frozen=True)
class CallerContext:
    """Pre-validated identity of whoever invokes a workflow operation"""

    caller_id: int
    role: str

    @property
    def is_customer(self) -> bool:
        return self.role == CUSTOMER

    @property
    def is_staff(self) -> bool:
        return self.role != CUSTOMER


def require_role(caller: CallerContext, *roles: str) -> None:
    """Raise ForbiddenError unless the caller holds one of ``roles``"""
    if caller.role not in roles:
        raise ForbiddenError("You do not have permission to perform this action")


def require_staff(caller: CallerContext) -> None:
    if not caller.is_staff:
        raise ForbiddenError("Staff access required")
