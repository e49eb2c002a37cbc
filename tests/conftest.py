"""
PayCycle - Test Configuration

Pytest fixtures and configuration.
"""

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator, List, Optional
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from paycycle.database import Base, get_async_session
from paycycle.models import (
    AbsenceRecord,
    Allowance,
    AllowanceType,
    CalculationMode,
    ContractStatus,
    Deduction,
    DeductionType,
    Department,
    Employee,
    EmployeeClassification,
    EmployeeStatus,
    EmploymentContract,
    PaymentDetail,
    PaymentMethod,
    PayrollReviewer,
    StatutoryLoanAccount,
    TargetKind,
)
from paycycle.services.authorization import RoleBasedAuthorizer, TenantRole
from main import app


# In-memory database shared by every connection of the test engine
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database for each test."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session
        await session.rollback()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def session_factory(db_session: AsyncSession) -> async_sessionmaker:
    """Factory for extra sessions against the same test database."""
    return TestSessionLocal


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database session override."""

    async def override_get_session():
        yield db_session

    app.dependency_overrides[get_async_session] = override_get_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ===========================================
# IDENTITY FIXTURES
# ===========================================

@pytest.fixture
def tenant_id() -> UUID:
    return uuid4()


@pytest.fixture
def user_id() -> UUID:
    return uuid4()


@pytest.fixture
def admin_authorizer() -> RoleBasedAuthorizer:
    return RoleBasedAuthorizer(lambda user, tenant: TenantRole.ADMIN.value)


@pytest.fixture
def viewer_authorizer() -> RoleBasedAuthorizer:
    return RoleBasedAuthorizer(lambda user, tenant: TenantRole.VIEWER.value)


@pytest.fixture
def admin_headers(user_id: UUID) -> dict:
    return {"X-User-Id": str(user_id), "X-User-Role": "ADMIN"}


# ===========================================
# DATA FACTORY
# ===========================================

class PayrollDataFactory:
    """Creates committed payroll input records for one tenant."""

    def __init__(self, session: AsyncSession, tenant_id: UUID):
        self.session = session
        self.tenant_id = tenant_id
        self._sequence = 0

    async def _save(self, *records):
        self.session.add_all(records)
        await self.session.commit()
        return records[0] if len(records) == 1 else records

    async def employee(
        self,
        salary: str = "50000",
        employee_number: Optional[str] = None,
        hire_date: date = date(2020, 1, 1),
        contract_end: Optional[date] = None,
        contract_status: ContractStatus = ContractStatus.ACTIVE,
        status: EmployeeStatus = EmployeeStatus.ACTIVE,
        status_effective_date: Optional[date] = None,
        department_id: Optional[UUID] = None,
        classification: EmployeeClassification = EmployeeClassification.PRIMARY,
        **flags,
    ) -> Employee:
        self._sequence += 1
        employee = Employee(
            id=uuid4(),
            tenant_id=self.tenant_id,
            employee_number=employee_number or f"EMP{self._sequence:03d}",
            first_name="Test",
            last_name=f"Employee{self._sequence}",
            salary=Decimal(salary),
            hire_date=hire_date,
            status=status,
            status_effective_date=status_effective_date,
            department_id=department_id,
            classification=classification,
            pays_paye=flags.get("pays_paye", True),
            pays_nssf=flags.get("pays_nssf", True),
            pays_shif=flags.get("pays_shif", True),
            pays_housing_levy=flags.get("pays_housing_levy", True),
            pays_helb=flags.get("pays_helb", False),
            has_disability=flags.get("has_disability", False),
            contracts=[
                EmploymentContract(
                    id=uuid4(),
                    contract_type="PERMANENT",
                    start_date=hire_date,
                    end_date=contract_end,
                    status=contract_status,
                ),
            ],
        )
        return await self._save(employee)

    async def payment_detail(self, employee: Employee) -> PaymentDetail:
        detail = PaymentDetail(
            id=uuid4(),
            employee_id=employee.id,
            payment_method=PaymentMethod.BANK,
            bank_name="KCB",
            bank_code="01",
            account_number="1234567890",
            account_name=employee.full_name,
        )
        return await self._save(detail)

    async def department(self, name: str = "Finance") -> Department:
        return await self._save(Department(id=uuid4(), tenant_id=self.tenant_id, name=name))

    async def allowance_type(self, name: str, code: Optional[str] = None, **options) -> AllowanceType:
        allowance_type = AllowanceType(
            id=uuid4(),
            tenant_id=self.tenant_id,
            name=name,
            code=code,
            is_cash=options.get("is_cash", True),
            is_taxable=options.get("is_taxable", True),
            has_maximum_value=options.get("maximum_value") is not None,
            maximum_value=options.get("maximum_value"),
        )
        return await self._save(allowance_type)

    async def deduction_type(self, name: str, code: Optional[str] = None, **options) -> DeductionType:
        deduction_type = DeductionType(
            id=uuid4(),
            tenant_id=self.tenant_id,
            name=name,
            code=code,
            is_pre_tax=options.get("is_pre_tax", False),
            has_maximum_value=options.get("maximum_value") is not None,
            maximum_value=options.get("maximum_value"),
        )
        return await self._save(deduction_type)

    def _window(self, start: tuple, end: Optional[tuple]) -> dict:
        return {
            "start_year": start[0],
            "start_month": start[1],
            "end_year": end[0] if end else None,
            "end_month": end[1] if end else None,
        }

    async def allowance(
        self,
        allowance_type: AllowanceType,
        value: str,
        target_kind: TargetKind = TargetKind.COMPANY,
        target_id: Optional[UUID] = None,
        calculation_mode: CalculationMode = CalculationMode.FIXED,
        start: tuple = (2025, 1),
        end: Optional[tuple] = None,
        is_recurring: bool = True,
    ) -> Allowance:
        allowance = Allowance(
            id=uuid4(),
            tenant_id=self.tenant_id,
            allowance_type_id=allowance_type.id,
            target_kind=target_kind,
            target_id=target_id,
            value=Decimal(value),
            calculation_mode=calculation_mode,
            is_recurring=is_recurring,
            **self._window(start, end),
        )
        return await self._save(allowance)

    async def deduction(
        self,
        deduction_type: DeductionType,
        value: str,
        target_kind: TargetKind = TargetKind.COMPANY,
        target_id: Optional[UUID] = None,
        calculation_mode: CalculationMode = CalculationMode.FIXED,
        start: tuple = (2025, 1),
        end: Optional[tuple] = None,
        is_recurring: bool = True,
    ) -> Deduction:
        deduction = Deduction(
            id=uuid4(),
            tenant_id=self.tenant_id,
            deduction_type_id=deduction_type.id,
            target_kind=target_kind,
            target_id=target_id,
            value=Decimal(value),
            calculation_mode=calculation_mode,
            is_recurring=is_recurring,
            **self._window(start, end),
        )
        return await self._save(deduction)

    async def absence(self, employee: Employee, year: int, month: int, amount: str) -> AbsenceRecord:
        record = AbsenceRecord(
            id=uuid4(),
            tenant_id=self.tenant_id,
            employee_id=employee.id,
            year=year,
            month=month,
            days=1,
            deduction_amount=Decimal(amount),
        )
        return await self._save(record)

    async def loan_account(self, employee: Employee, monthly: str, balance: str) -> StatutoryLoanAccount:
        account = StatutoryLoanAccount(
            id=uuid4(),
            employee_id=employee.id,
            account_number=f"HELB-{employee.employee_number}",
            monthly_deduction=Decimal(monthly),
            current_balance=Decimal(balance),
        )
        return await self._save(account)

    async def reviewers(self, count: int = 2) -> List[PayrollReviewer]:
        reviewers = [
            PayrollReviewer(
                id=uuid4(),
                tenant_id=self.tenant_id,
                user_id=uuid4(),
                reviewer_level=level,
                name=f"Reviewer {level}",
                email=f"reviewer{level}@example.com",
            )
            for level in range(1, count + 1)
        ]
        self.session.add_all(reviewers)
        await self.session.commit()
        return reviewers


@pytest.fixture
def factory(db_session: AsyncSession, tenant_id: UUID) -> PayrollDataFactory:
    return PayrollDataFactory(db_session, tenant_id)
