"""
PayCycle - Adjustment Service

Creates allowance and deduction assignments, one at a time or as a bulk
import. Imports are all-or-nothing: every row is validated, every problem is
reported together, and nothing is inserted unless all rows are valid.

Import row fields:
- type_name: allowance / deduction type name (catalog lookup)
- target_kind: INDIVIDUAL, DEPARTMENT, SUB_DEPARTMENT, JOB_TITLE, COMPANY
- target: employee number, department / sub-department name or job title
  (empty for COMPANY)
- value, calculation_mode (FIXED / PERCENTAGE), is_recurring
- start_month, start_year, optional number_of_months or end_month / end_year
- metadata: JSON object or JSON text
"""

import json
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from paycycle.models.adjustment import (
    AdjustmentKind,
    Allowance,
    AllowanceType,
    CalculationMode,
    Deduction,
    DeductionType,
    TargetKind,
)
from paycycle.models.employee import Employee
from paycycle.models.organization import Department, JobTitle, SubDepartment
from paycycle.services.adjustment_resolver import build_target
from paycycle.services.authorization import (
    Authorizer,
    PayrollModule,
    PermissionAction,
    ensure_allowed,
)
from paycycle.utils.error_handling import (
    AdjustmentImportException,
    AppException,
    DatabaseException,
    DataIntegrityException,
    NotFoundException,
    ValidationException,
)
from paycycle.utils.period import PayrollPeriod, end_period


logger = logging.getLogger(__name__)


_TRUE_VALUES = {"true", "yes", "y", "1"}
_FALSE_VALUES = {"false", "no", "n", "0"}


@dataclass
class AssignmentDraft:
    """A validated assignment ready to insert."""

    type_id: uuid.UUID
    target_kind: TargetKind
    target_id: Optional[uuid.UUID]
    value: Decimal
    calculation_mode: CalculationMode
    is_recurring: bool
    start: PayrollPeriod
    end: Optional[PayrollPeriod]
    number_of_months: Optional[int]
    metadata: Optional[dict]


class RowErrors:
    """Error collector for one input row."""

    def __init__(self, row: int):
        self.row = row
        self.items: List[Dict[str, Any]] = []

    def add(self, field: str, message: str) -> None:
        self.items.append({"row": self.row, "field": field, "message": message})

    def __bool__(self) -> bool:
        return bool(self.items)


# ===========================================
# FIELD PARSERS
# ===========================================

def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if _blank(value):
        return None
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    return None


def parse_amount(value: Any) -> Optional[Decimal]:
    if _blank(value) or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


def parse_metadata(value: Any) -> Optional[dict]:
    """JSON object from a dict or JSON text; raises ValueError otherwise."""
    if _blank(value):
        return None
    if isinstance(value, dict):
        return value
    parsed = json.loads(str(value))
    if not isinstance(parsed, dict):
        raise ValueError("metadata must be a JSON object")
    return parsed


# ===========================================
# SERVICE
# ===========================================

class AdjustmentService:
    """Allowance and deduction assignment writes."""

    def __init__(self, db: AsyncSession, authorizer: Authorizer):
        self.db = db
        self.authorizer = authorizer

    @staticmethod
    def _models(kind: AdjustmentKind):
        if kind == AdjustmentKind.ALLOWANCE:
            return Allowance, AllowanceType, "allowance_type_id"
        return Deduction, DeductionType, "deduction_type_id"

    @staticmethod
    def parse_kind(kind: Any) -> AdjustmentKind:
        try:
            return AdjustmentKind(kind.lower() if isinstance(kind, str) else kind)
        except ValueError:
            raise ValidationException(
                message=f"Unknown adjustment kind: {kind!r}",
                field="kind",
                details={"allowed": [k.value for k in AdjustmentKind]},
            )

    # ===========================================
    # SINGLE ASSIGNMENT
    # ===========================================

    async def assign(
        self,
        tenant_id: uuid.UUID,
        kind: Any,
        user_id: uuid.UUID,
        type_id: Any,
        target_kind: Any,
        target_id: Any = None,
        value: Any = None,
        calculation_mode: Any = CalculationMode.FIXED,
        is_recurring: Any = True,
        start_month: Any = None,
        start_year: Any = None,
        number_of_months: Any = None,
        end_month: Any = None,
        end_year: Any = None,
        metadata: Any = None,
    ) -> Union[Allowance, Deduction]:
        """Create one assignment; the target is given by id."""
        await ensure_allowed(self.authorizer, user_id, tenant_id, PayrollModule.ADJUSTMENTS, PermissionAction.CAN_WRITE)
        adjustment_kind = self.parse_kind(kind)
        model, type_model, _ = self._models(adjustment_kind)

        adjustment_type = (await self.db.execute(
            select(type_model).where(type_model.id == type_id, type_model.tenant_id == tenant_id)
        )).scalar_one_or_none()
        if adjustment_type is None:
            raise NotFoundException(f"{adjustment_kind.value.title()} type", str(type_id))

        target = build_target(target_kind, target_id)
        errors = RowErrors(1)
        draft = self._validate_fields(
            errors,
            {
                "value": value,
                "calculation_mode": calculation_mode,
                "is_recurring": is_recurring,
                "start_month": start_month,
                "start_year": start_year,
                "number_of_months": number_of_months,
                "end_month": end_month,
                "end_year": end_year,
                "metadata": metadata,
            },
            adjustment_type.id,
            target.kind,
            target.target_id,
        )
        if errors:
            first = errors.items[0]
            raise ValidationException(
                message=first["message"],
                field=first["field"],
                details={"errors": errors.items},
            )

        assignment = self._to_model(adjustment_kind, tenant_id, draft, user_id)
        self.db.add(assignment)
        await self._commit(f"{adjustment_kind.value} assignment")
        await self.db.refresh(assignment)
        logger.info(f"Assigned {adjustment_kind.value} {adjustment_type.name} to {target.kind.value} by {user_id}")
        return assignment

    # ===========================================
    # BULK IMPORT
    # ===========================================

    async def import_assignments(
        self,
        tenant_id: uuid.UUID,
        kind: Any,
        rows: Sequence[Mapping[str, Any]],
        user_id: uuid.UUID,
    ) -> List[Union[Allowance, Deduction]]:
        """
        Validate and insert many assignments.

        Raises:
            AdjustmentImportException: with every row error; nothing inserted
        """
        await ensure_allowed(self.authorizer, user_id, tenant_id, PayrollModule.ADJUSTMENTS, PermissionAction.CAN_WRITE)
        adjustment_kind = self.parse_kind(kind)
        if not rows:
            raise ValidationException(message="No rows to import", field="rows")

        lookups = await self._load_lookups(tenant_id, adjustment_kind)

        drafts: List[AssignmentDraft] = []
        all_errors: List[Dict[str, Any]] = []
        for index, row in enumerate(rows, start=1):
            errors = RowErrors(index)
            draft = self._validate_row(errors, row, lookups)
            if errors:
                all_errors.extend(errors.items)
            elif draft is not None:
                drafts.append(draft)

        if all_errors:
            logger.info(f"{adjustment_kind.value} import rejected: {len(all_errors)} error(s) in {len(rows)} row(s)")
            raise AdjustmentImportException(all_errors)

        assignments = [self._to_model(adjustment_kind, tenant_id, draft, user_id) for draft in drafts]
        self.db.add_all(assignments)
        await self._commit(f"{adjustment_kind.value} import")
        logger.info(f"Imported {len(assignments)} {adjustment_kind.value}(s) for tenant {tenant_id} by {user_id}")
        return assignments

    async def _load_lookups(self, tenant_id: uuid.UUID, kind: AdjustmentKind) -> Dict[str, Dict[str, uuid.UUID]]:
        _, type_model, _ = self._models(kind)

        async def name_map(column_id, column_name, where) -> Dict[str, uuid.UUID]:
            result = await self.db.execute(select(column_id, column_name).where(where))
            return {str(name).strip().lower(): identifier for identifier, name in result.all()}

        return {
            "types": await name_map(type_model.id, type_model.name, type_model.tenant_id == tenant_id),
            TargetKind.INDIVIDUAL.value: await name_map(
                Employee.id, Employee.employee_number, Employee.tenant_id == tenant_id,
            ),
            TargetKind.DEPARTMENT.value: await name_map(
                Department.id, Department.name, Department.tenant_id == tenant_id,
            ),
            TargetKind.SUB_DEPARTMENT.value: await name_map(
                SubDepartment.id, SubDepartment.name, SubDepartment.tenant_id == tenant_id,
            ),
            TargetKind.JOB_TITLE.value: await name_map(
                JobTitle.id, JobTitle.title, JobTitle.tenant_id == tenant_id,
            ),
        }

    def _validate_row(
        self,
        errors: RowErrors,
        row: Mapping[str, Any],
        lookups: Dict[str, Dict[str, uuid.UUID]],
    ) -> Optional[AssignmentDraft]:
        type_name = row.get("type_name")
        type_id = None
        if _blank(type_name):
            errors.add("type_name", "Type name is required")
        else:
            type_id = lookups["types"].get(str(type_name).strip().lower())
            if type_id is None:
                errors.add("type_name", f"Unknown type: {type_name}")

        target_kind = None
        target_id = None
        raw_kind = row.get("target_kind")
        try:
            target_kind = TargetKind(str(raw_kind).strip().upper())
        except ValueError:
            errors.add("target_kind", f"Unrecognised target scope: {raw_kind!r}")

        if target_kind is not None and target_kind != TargetKind.COMPANY:
            identifier = row.get("target")
            if _blank(identifier):
                errors.add("target", f"{target_kind.value} rows need a target identifier")
            else:
                target_id = lookups[target_kind.value].get(str(identifier).strip().lower())
                if target_id is None:
                    errors.add("target", f"{target_kind.value} not found: {identifier}")
        elif target_kind == TargetKind.COMPANY and not _blank(row.get("target")):
            errors.add("target", "Company-wide rows cannot name a target")

        return self._validate_fields(errors, row, type_id, target_kind, target_id)

    def _validate_fields(
        self,
        errors: RowErrors,
        row: Mapping[str, Any],
        type_id: Optional[uuid.UUID],
        target_kind: Optional[TargetKind],
        target_id: Optional[uuid.UUID],
    ) -> Optional[AssignmentDraft]:
        value = parse_amount(row.get("value"))
        if value is None:
            errors.add("value", "Value must be a number")
        elif value < 0:
            errors.add("value", "Value cannot be negative")

        calculation_mode = None
        raw_mode = row.get("calculation_mode")
        if _blank(raw_mode):
            calculation_mode = CalculationMode.FIXED
        else:
            try:
                calculation_mode = CalculationMode(
                    raw_mode.value if isinstance(raw_mode, CalculationMode) else str(raw_mode).strip().upper()
                )
            except ValueError:
                errors.add("calculation_mode", f"Calculation mode must be FIXED or PERCENTAGE, got {raw_mode!r}")

        raw_recurring = row.get("is_recurring")
        is_recurring = True if _blank(raw_recurring) else parse_bool(raw_recurring)
        if is_recurring is None:
            errors.add("is_recurring", f"Recurring flag must be true or false, got {raw_recurring!r}")

        start = None
        try:
            start = PayrollPeriod.parse(row.get("start_month"), row.get("start_year"))
        except AppException as exc:
            errors.add(f"start_{exc.field}", exc.message)

        number_of_months = None
        raw_months = row.get("number_of_months")
        if not _blank(raw_months):
            try:
                number_of_months = int(str(raw_months).strip())
            except ValueError:
                errors.add("number_of_months", "Duration must be a whole number of months")
            else:
                if number_of_months < 1:
                    errors.add("number_of_months", "Duration must be at least one month")

        end = None
        if not _blank(row.get("end_month")) or not _blank(row.get("end_year")):
            try:
                end = PayrollPeriod.parse(row.get("end_month"), row.get("end_year"))
            except AppException as exc:
                errors.add(f"end_{exc.field}", exc.message)
        if end is None and number_of_months and number_of_months >= 1 and start is not None:
            try:
                end = end_period(start, number_of_months)
            except AppException:
                errors.add("number_of_months", f"Duration of {number_of_months} months runs past the last supported year")
        if start is not None and end is not None and end < start:
            errors.add("end_month", "End window precedes start window")

        metadata = None
        try:
            metadata = parse_metadata(row.get("metadata"))
        except ValueError as exc:
            errors.add("metadata", f"Invalid metadata JSON: {exc}")

        if errors:
            return None
        return AssignmentDraft(
            type_id=type_id,
            target_kind=target_kind,
            target_id=target_id,
            value=value,
            calculation_mode=calculation_mode,
            is_recurring=is_recurring,
            start=start,
            end=end,
            number_of_months=number_of_months,
            metadata=metadata,
        )

    def _to_model(
        self,
        kind: AdjustmentKind,
        tenant_id: uuid.UUID,
        draft: AssignmentDraft,
        user_id: uuid.UUID,
    ) -> Union[Allowance, Deduction]:
        model, _, type_column = self._models(kind)
        return model(
            tenant_id=tenant_id,
            target_kind=draft.target_kind,
            target_id=draft.target_id,
            value=draft.value,
            calculation_mode=draft.calculation_mode,
            is_recurring=draft.is_recurring,
            start_month=draft.start.month,
            start_year=draft.start.year,
            end_month=draft.end.month if draft.end else None,
            end_year=draft.end.year if draft.end else None,
            number_of_months=draft.number_of_months,
            extra_data=draft.metadata,
            created_by_id=user_id,
            **{type_column: draft.type_id},
        )

    async def _commit(self, action: str) -> None:
        try:
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            logger.warning(f"{action} violated a constraint: {exc}")
            raise DataIntegrityException(f"{action.capitalize()} conflicts with existing data", original_error=exc)
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error(f"{action} failed: {exc}", exc_info=True)
            raise DatabaseException(f"{action.capitalize()} failed; no changes were saved", original_error=exc)
