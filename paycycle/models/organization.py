"""
PayCycle - Organisation Models

Departments, sub-departments and job titles are maintained elsewhere; the
payroll engine reads them to resolve adjustment import targets by name.
"""

import uuid
from typing import Optional

from sqlalchemy import ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from paycycle.models.base import BaseModel


class Department(BaseModel):
    __tablename__ = "departments"

    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(150), nullable=False)

    __table_args__ = (
        UniqueConstraint('tenant_id', 'name', name='uq_department_tenant_name'),
    )


class SubDepartment(BaseModel):
    __tablename__ = "sub_departments"

    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("departments.id", ondelete="SET NULL"),
        nullable=True,
    )
    name: Mapped[str] = mapped_column(String(150), nullable=False)

    __table_args__ = (
        UniqueConstraint('tenant_id', 'name', name='uq_sub_department_tenant_name'),
    )


class JobTitle(BaseModel):
    __tablename__ = "job_titles"

    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(150), nullable=False)

    __table_args__ = (
        UniqueConstraint('tenant_id', 'title', name='uq_job_title_tenant_title'),
    )
