"""
PayCycle - Adjustment Assignment and Import Tests
"""

import pytest
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import func, select

from paycycle.models import Allowance, CalculationMode, Deduction, TargetKind
from paycycle.services.adjustment_service import (
    AdjustmentService,
    parse_amount,
    parse_bool,
    parse_metadata,
)
from paycycle.utils.error_handling import (
    AdjustmentImportException,
    AuthorizationException,
    InvalidTargetScopeException,
    NotFoundException,
    ValidationException,
)


async def count(session, model) -> int:
    return (await session.execute(select(func.count(model.id)))).scalar_one()


class TestFieldParsers:

    @pytest.mark.parametrize("raw,expected", [
        (True, True), ("yes", True), ("Y", True), ("1", True),
        ("false", False), ("No", False), ("0", False),
        ("", None), ("perhaps", None),
    ])
    def test_parse_bool(self, raw, expected):
        assert parse_bool(raw) is expected

    def test_parse_amount(self):
        assert parse_amount("1500.50") == Decimal("1500.50")
        assert parse_amount(2000) == Decimal("2000")
        assert parse_amount("abc") is None
        assert parse_amount("NaN") is None
        assert parse_amount(True) is None

    def test_parse_metadata(self):
        assert parse_metadata('{"source": "hr"}') == {"source": "hr"}
        assert parse_metadata({"a": 1}) == {"a": 1}
        assert parse_metadata("") is None
        with pytest.raises(ValueError):
            parse_metadata("[1, 2]")
        with pytest.raises(ValueError):
            parse_metadata("{not json")


class TestSingleAssignment:

    @pytest.mark.asyncio
    async def test_assign_department_allowance(self, db_session, factory, tenant_id, user_id, admin_authorizer):
        department = await factory.department("Sales")
        transport = await factory.allowance_type("Transport", "TRANSPORT")

        allowance = await AdjustmentService(db_session, admin_authorizer).assign(
            tenant_id, "allowance", user_id,
            type_id=transport.id,
            target_kind="DEPARTMENT",
            target_id=department.id,
            value="3000",
            start_month=1,
            start_year=2025,
            number_of_months=6,
        )

        assert isinstance(allowance, Allowance)
        assert allowance.target_kind == TargetKind.DEPARTMENT
        assert allowance.target_id == department.id
        assert (allowance.end_year, allowance.end_month) == (2025, 6)
        assert allowance.created_by_id == user_id

    @pytest.mark.asyncio
    async def test_company_assignment_rejects_target(self, db_session, factory, tenant_id, user_id, admin_authorizer):
        transport = await factory.allowance_type("Transport")
        with pytest.raises(InvalidTargetScopeException):
            await AdjustmentService(db_session, admin_authorizer).assign(
                tenant_id, "allowance", user_id,
                type_id=transport.id, target_kind="COMPANY", target_id=uuid4(),
                value="100", start_month=1, start_year=2025,
            )

    @pytest.mark.asyncio
    async def test_unknown_type(self, db_session, tenant_id, user_id, admin_authorizer):
        with pytest.raises(NotFoundException):
            await AdjustmentService(db_session, admin_authorizer).assign(
                tenant_id, "deduction", user_id,
                type_id=uuid4(), target_kind="COMPANY",
                value="100", start_month=1, start_year=2025,
            )

    @pytest.mark.asyncio
    async def test_invalid_value_reports_field(self, db_session, factory, tenant_id, user_id, admin_authorizer):
        sacco = await factory.deduction_type("Sacco")
        with pytest.raises(ValidationException) as exc_info:
            await AdjustmentService(db_session, admin_authorizer).assign(
                tenant_id, "deduction", user_id,
                type_id=sacco.id, target_kind="COMPANY",
                value="-5", start_month=1, start_year=2025,
            )
        assert exc_info.value.field == "value"

    @pytest.mark.asyncio
    async def test_unknown_kind(self, db_session, tenant_id, user_id, admin_authorizer):
        with pytest.raises(ValidationException):
            await AdjustmentService(db_session, admin_authorizer).assign(
                tenant_id, "bonus", user_id, type_id=uuid4(), target_kind="COMPANY",
            )


class TestBulkImport:

    @pytest.mark.asyncio
    async def test_valid_rows_imported(self, db_session, factory, tenant_id, user_id, admin_authorizer):
        await factory.employee(employee_number="EMP042")
        await factory.department("Finance")
        await factory.allowance_type("House Allowance", "HOUSE")

        rows = [
            {
                "type_name": "house allowance",
                "target_kind": "individual",
                "target": "emp042",
                "value": "12000",
                "start_month": "January",
                "start_year": "2025",
                "number_of_months": "3",
                "metadata": '{"source": "payroll-sheet"}',
            },
            {
                "type_name": "House Allowance",
                "target_kind": "DEPARTMENT",
                "target": "Finance",
                "value": "10",
                "calculation_mode": "percentage",
                "is_recurring": "yes",
                "start_month": 2,
                "start_year": 2025,
                "end_month": 12,
                "end_year": 2025,
            },
            {
                "type_name": "House Allowance",
                "target_kind": "COMPANY",
                "value": 500,
                "is_recurring": "no",
                "start_month": 6,
                "start_year": 2025,
                "end_month": 6,
                "end_year": 2025,
            },
        ]

        imported = await AdjustmentService(db_session, admin_authorizer).import_assignments(
            tenant_id, "allowance", rows, user_id,
        )

        assert len(imported) == 3
        assert await count(db_session, Allowance) == 3
        individual, department, company = imported
        assert (individual.end_year, individual.end_month) == (2025, 3)
        assert individual.extra_data == {"source": "payroll-sheet"}
        assert department.calculation_mode == CalculationMode.PERCENTAGE
        assert company.is_recurring is False
        assert company.target_id is None

    @pytest.mark.asyncio
    async def test_every_row_error_reported_and_nothing_inserted(
        self, db_session, factory, tenant_id, user_id, admin_authorizer,
    ):
        await factory.deduction_type("Sacco")
        rows = [
            {"type_name": "Sacco", "target_kind": "COMPANY", "value": "1000", "start_month": 1, "start_year": 2025},
            {"type_name": "Gym", "target_kind": "COMPANY", "value": "abc", "start_month": 1, "start_year": 2025},
            {"type_name": "Sacco", "target_kind": "TEAM", "value": "100", "start_month": 13, "start_year": 2025},
            {
                "type_name": "Sacco", "target_kind": "INDIVIDUAL", "target": "EMP999",
                "value": "100", "start_month": 5, "start_year": 2025, "end_month": 2, "end_year": 2025,
            },
        ]

        with pytest.raises(AdjustmentImportException) as exc_info:
            await AdjustmentService(db_session, admin_authorizer).import_assignments(
                tenant_id, "deduction", rows, user_id,
            )

        reported = {(e["row"], e["field"]) for e in exc_info.value.errors}
        assert reported == {
            (2, "type_name"), (2, "value"),
            (3, "target_kind"), (3, "start_month"),
            (4, "target"), (4, "end_month"),
        }
        assert exc_info.value.status_code == 422
        assert await count(db_session, Deduction) == 0

    @pytest.mark.asyncio
    async def test_duration_past_last_year_is_a_row_error(
        self, db_session, factory, tenant_id, user_id, admin_authorizer,
    ):
        await factory.allowance_type("Transport")
        rows = [
            {"type_name": "Gym", "target_kind": "COMPANY", "value": "1", "start_month": 1, "start_year": 2025},
            {
                "type_name": "Transport", "target_kind": "COMPANY", "value": "100",
                "is_recurring": "no", "start_month": 12, "start_year": 2100, "number_of_months": "2",
            },
        ]

        with pytest.raises(AdjustmentImportException) as exc_info:
            await AdjustmentService(db_session, admin_authorizer).import_assignments(
                tenant_id, "allowance", rows, user_id,
            )

        reported = {(e["row"], e["field"]) for e in exc_info.value.errors}
        assert reported == {(1, "type_name"), (2, "number_of_months")}
        assert await count(db_session, Allowance) == 0

    @pytest.mark.asyncio
    async def test_empty_import_rejected(self, db_session, tenant_id, user_id, admin_authorizer):
        with pytest.raises(ValidationException):
            await AdjustmentService(db_session, admin_authorizer).import_assignments(
                tenant_id, "allowance", [], user_id,
            )

    @pytest.mark.asyncio
    async def test_names_resolve_within_tenant_only(self, db_session, factory, tenant_id, user_id, admin_authorizer):
        await factory.allowance_type("Transport")
        rows = [{"type_name": "Transport", "target_kind": "COMPANY", "value": "1", "start_month": 1, "start_year": 2025}]

        with pytest.raises(AdjustmentImportException):
            await AdjustmentService(db_session, admin_authorizer).import_assignments(
                uuid4(), "allowance", rows, user_id,
            )

    @pytest.mark.asyncio
    async def test_viewer_cannot_import(self, db_session, tenant_id, user_id, viewer_authorizer):
        rows = [{"type_name": "Transport", "target_kind": "COMPANY", "value": "1", "start_month": 1, "start_year": 2025}]
        with pytest.raises(AuthorizationException):
            await AdjustmentService(db_session, viewer_authorizer).import_assignments(
                tenant_id, "allowance", rows, user_id,
            )
