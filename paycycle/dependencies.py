"""
PayCycle - FastAPI Dependencies

Shared dependencies for database sessions, caller identity and services.

Identity is established by the upstream gateway, which forwards:
1. X-User-Id: the authenticated user's id
2. X-User-Role: the user's role within the tenant in the path
"""

import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from paycycle.database import get_async_session
from paycycle.services.adjustment_service import AdjustmentService
from paycycle.services.authorization import Authorizer, RoleBasedAuthorizer
from paycycle.services.payroll_service import PayrollService
from paycycle.services.review_workflow import ReviewWorkflowService
from paycycle.services.run_status import RunStatusService


async def get_current_user_id(
    x_user_id: Optional[str] = Header(default=None),
) -> uuid.UUID:
    """
    Caller id from the gateway header.

    Raises:
        HTTPException: If the header is missing or not a UUID
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    try:
        return uuid.UUID(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identity",
        )


async def get_authorizer(
    x_user_role: Optional[str] = Header(default=None),
) -> Authorizer:
    """Role-based authorizer for the role the gateway resolved."""
    return RoleBasedAuthorizer(lambda user_id, tenant_id: x_user_role)


def get_payroll_service(
    db: AsyncSession = Depends(get_async_session),
    authorizer: Authorizer = Depends(get_authorizer),
) -> PayrollService:
    return PayrollService(db, authorizer)


def get_review_service(
    db: AsyncSession = Depends(get_async_session),
    authorizer: Authorizer = Depends(get_authorizer),
) -> ReviewWorkflowService:
    return ReviewWorkflowService(db, authorizer)


def get_run_status_service(
    db: AsyncSession = Depends(get_async_session),
    authorizer: Authorizer = Depends(get_authorizer),
) -> RunStatusService:
    return RunStatusService(db, authorizer)


def get_adjustment_service(
    db: AsyncSession = Depends(get_async_session),
    authorizer: Authorizer = Depends(get_authorizer),
) -> AdjustmentService:
    return AdjustmentService(db, authorizer)
