"""
PayCycle - Authorization

Permission decisions belong to an external collaborator. The engine only
needs `is_allowed(user_id, tenant_id, module, action)` and calls it before
every mutating operation; a denial stops the operation before any write.

RoleBasedAuthorizer is the default collaborator: it maps the caller's tenant
role to a module/action matrix.

Permission Matrix:
==================
| Module         | Action     | Owner | Admin | Payroll Mgr | Reviewer | Viewer |
|----------------|------------|-------|-------|-------------|----------|--------|
| PAYROLL        | can_read   | X     | X     | X           | X        | X      |
| PAYROLL        | can_write  | X     | X     | X           |          |        |
| PAYROLL        | can_delete | X     | X     |             |          |        |
| PAYROLL_REVIEW | can_read   | X     | X     | X           | X        | X      |
| PAYROLL_REVIEW | can_write  | X     | X     |             | X        |        |
| ADJUSTMENTS    | can_read   | X     | X     | X           |          | X      |
| ADJUSTMENTS    | can_write  | X     | X     | X           |          |        |
"""

import inspect
import logging
import uuid
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Protocol, Set, Union

from paycycle.utils.error_handling import AuthorizationException, ExternalServiceException


logger = logging.getLogger(__name__)


# ===========================================
# PERMISSION ENUMS
# ===========================================

class PayrollModule(str, Enum):
    PAYROLL = "PAYROLL"
    PAYROLL_REVIEW = "PAYROLL_REVIEW"
    ADJUSTMENTS = "ADJUSTMENTS"


class PermissionAction(str, Enum):
    CAN_READ = "can_read"
    CAN_WRITE = "can_write"
    CAN_DELETE = "can_delete"


class TenantRole(str, Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    PAYROLL_MANAGER = "PAYROLL_MANAGER"
    REVIEWER = "REVIEWER"
    VIEWER = "VIEWER"


_READ = PermissionAction.CAN_READ
_WRITE = PermissionAction.CAN_WRITE
_DELETE = PermissionAction.CAN_DELETE

ROLE_PERMISSIONS: Dict[TenantRole, Dict[PayrollModule, Set[PermissionAction]]] = {
    TenantRole.OWNER: {
        PayrollModule.PAYROLL: {_READ, _WRITE, _DELETE},
        PayrollModule.PAYROLL_REVIEW: {_READ, _WRITE},
        PayrollModule.ADJUSTMENTS: {_READ, _WRITE},
    },
    TenantRole.ADMIN: {
        PayrollModule.PAYROLL: {_READ, _WRITE, _DELETE},
        PayrollModule.PAYROLL_REVIEW: {_READ, _WRITE},
        PayrollModule.ADJUSTMENTS: {_READ, _WRITE},
    },
    TenantRole.PAYROLL_MANAGER: {
        PayrollModule.PAYROLL: {_READ, _WRITE},
        PayrollModule.PAYROLL_REVIEW: {_READ},
        PayrollModule.ADJUSTMENTS: {_READ, _WRITE},
    },
    TenantRole.REVIEWER: {
        PayrollModule.PAYROLL: {_READ},
        PayrollModule.PAYROLL_REVIEW: {_READ, _WRITE},
    },
    TenantRole.VIEWER: {
        PayrollModule.PAYROLL: {_READ},
        PayrollModule.PAYROLL_REVIEW: {_READ},
        PayrollModule.ADJUSTMENTS: {_READ},
    },
}


def has_permission(role: Union[TenantRole, str, None], module: PayrollModule, action: PermissionAction) -> bool:
    """Check if a role grants an action on a module."""
    if role is None:
        return False
    try:
        tenant_role = TenantRole(role.upper() if isinstance(role, str) else role)
    except ValueError:
        return False
    return action in ROLE_PERMISSIONS.get(tenant_role, {}).get(module, set())


# ===========================================
# COLLABORATOR CONTRACT
# ===========================================

class Authorizer(Protocol):
    async def is_allowed(
        self,
        user_id: uuid.UUID,
        tenant_id: uuid.UUID,
        module: PayrollModule,
        action: PermissionAction,
    ) -> bool:
        ...


RoleLookup = Callable[[uuid.UUID, uuid.UUID], Union[Optional[str], Awaitable[Optional[str]]]]


class RoleBasedAuthorizer:
    """Authorizer backed by a (user, tenant) -> role lookup."""

    def __init__(self, role_lookup: RoleLookup):
        self.role_lookup = role_lookup

    async def is_allowed(
        self,
        user_id: uuid.UUID,
        tenant_id: uuid.UUID,
        module: PayrollModule,
        action: PermissionAction,
    ) -> bool:
        role = self.role_lookup(user_id, tenant_id)
        if inspect.isawaitable(role):
            role = await role
        return has_permission(role, module, action)


async def ensure_allowed(
    authorizer: Authorizer,
    user_id: Optional[uuid.UUID],
    tenant_id: uuid.UUID,
    module: PayrollModule,
    action: PermissionAction,
) -> None:
    """
    Raise AuthorizationException unless the collaborator allows the action.

    The message never reveals whether the target record exists.
    """
    if user_id is None:
        raise AuthorizationException()
    try:
        allowed = await authorizer.is_allowed(user_id, tenant_id, module, action)
    except AuthorizationException:
        raise
    except Exception as exc:
        logger.error(f"Authorization check failed for user {user_id}: {exc}", exc_info=True)
        raise ExternalServiceException(
            service_name="authorizer",
            message="Authorization service unavailable",
            original_error=exc,
        )
    if not allowed:
        logger.info(f"Denied {action.value} on {module.value} for user {user_id} in tenant {tenant_id}")
        raise AuthorizationException(required_permission=f"{module.value}:{action.value}")
