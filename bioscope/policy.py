"""Role-based access control as a single auditable table.

``can`` is a pure function of (principal, operation, resource, owner). Every
service goes through it instead of checking roles inline.
"""
from __future__ import annotations

from enum import Enum
from typing import Dict, Optional

from .errors import AuthorizationError
from .models import RoleEnum
from .tokens import Principal


class Operation(str, Enum):
    CREATE = "create"
    READ = "read"
    LIST = "list"
    UPDATE = "update"
    DELETE = "delete"
    APPROVE = "approve"
    REJECT = "reject"
    END = "end"
    VIEW_SCHEDULE = "view_schedule"


class Resource(str, Enum):
    BOOKING = "booking"
    SESSION = "session"
    USER = "user"
    EQUIPMENT = "equipment"


class Grant(str, Enum):
    ANY = "any"
    OWN = "own"


_ALL_OPERATIONS = frozenset(Operation)

Rule = Dict[Resource, Dict[Operation, Grant]]

_TEACHER_RULES: Rule = {
    Resource.BOOKING: {op: Grant.ANY for op in _ALL_OPERATIONS},
    Resource.SESSION: {op: Grant.ANY for op in _ALL_OPERATIONS},
    Resource.USER: {Operation.READ: Grant.OWN},
    Resource.EQUIPMENT: {Operation.READ: Grant.ANY, Operation.LIST: Grant.ANY},
}

_STUDENT_RULES: Rule = {
    Resource.BOOKING: {
        Operation.CREATE: Grant.ANY,
        Operation.LIST: Grant.ANY,
        Operation.VIEW_SCHEDULE: Grant.ANY,
        Operation.READ: Grant.OWN,
        Operation.UPDATE: Grant.OWN,
        Operation.DELETE: Grant.OWN,
    },
    Resource.SESSION: {
        Operation.CREATE: Grant.ANY,
        Operation.LIST: Grant.ANY,
        Operation.READ: Grant.OWN,
        Operation.END: Grant.OWN,
    },
    Resource.USER: {Operation.READ: Grant.OWN},
    Resource.EQUIPMENT: {Operation.READ: Grant.ANY, Operation.LIST: Grant.ANY},
}

POLICY: Dict[RoleEnum, Optional[Rule]] = {
    RoleEnum.ADMIN: None,  # unrestricted
    RoleEnum.TEACHER: _TEACHER_RULES,
    RoleEnum.STUDENT: _STUDENT_RULES,
}


def can(
    principal: Principal,
    operation: Operation,
    resource: Resource,
    owner_id: Optional[str] = None,
) -> bool:
    rules = POLICY[principal.role]
    if rules is None:
        return True
    grant = rules.get(resource, {}).get(operation)
    if grant is None:
        return False
    if grant is Grant.ANY:
        return True
    return owner_id is not None and owner_id == principal.user_id


def ensure(
    principal: Principal,
    operation: Operation,
    resource: Resource,
    owner_id: Optional[str] = None,
    message: Optional[str] = None,
) -> None:
    if not can(principal, operation, resource, owner_id):
        raise AuthorizationError(message or f"Not allowed to {operation.value} this {resource.value}")


def sees_all(principal: Principal, resource: Resource) -> bool:
    """True when the principal may read every instance of ``resource`` regardless of owner."""

    rules = POLICY[principal.role]
    if rules is None:
        return True
    return rules.get(resource, {}).get(Operation.READ) is Grant.ANY


def scoped_owner(principal: Principal, resource: Resource, requested_user_id: Optional[str]) -> Optional[str]:
    """Resolve the owner filter a listing should apply.

    Returns ``None`` when the listing is unrestricted. Principals that may only
    read their own instances are pinned to themselves, and asking for somebody
    else's is denied.
    """

    ensure(principal, Operation.LIST, resource)
    if sees_all(principal, resource):
        return requested_user_id
    if requested_user_id is not None and requested_user_id != principal.user_id:
        raise AuthorizationError(f"Cannot view other users' {resource.value}s")
    return principal.user_id
