"""
Revenue balance selector.

Responsibility:
    Deferred revenue balances (total allocated minus revenue recognized to
    date), the per-period revenue waterfall, and contract list/detail reads.

Architecture position:
    Kernel > Selectors.  Read-only; derives every figure from contract
    versions, schedule entries and postable entries on each call.

Invariants enforced:
    - Only live contract versions (Active, Cancelled) contribute to balances.
      A Superseded version's posted history is carried onto its successor,
      so counting both would double count.
    - Reversed schedule entries never contribute.
    - Posted amounts in the waterfall come from PostableEntry rows, which
      exist exactly once per posted schedule entry.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from revrec_kernel.domain.dtos import ContractInfo, ScheduleEntryInfo
from revrec_kernel.models.contract import (
    LIVE_CONTRACT_STATUSES,
    ContractStatus,
    RevenueContract,
)
from revrec_kernel.models.period import Period
from revrec_kernel.models.postable_entry import PostableEntry
from revrec_kernel.models.schedule import EntryStatus, RecognitionScheduleEntry
from revrec_kernel.selectors.base import BaseSelector

ZERO = Decimal("0")


# ============================================================================
# DTOs
# ============================================================================


@dataclass(frozen=True)
class ContractDeferral:
    contract_id: UUID
    contract_number: str
    version_number: int
    currency: str
    total_allocated: Decimal
    recognized_to_date: Decimal

    @property
    def deferred(self) -> Decimal:
        return self.total_allocated - self.recognized_to_date


@dataclass(frozen=True)
class DeferredRevenueBalance:
    """Deferred revenue as of a date, with the per-contract breakdown."""

    as_of_date: date
    ledger_id: str | None
    total_allocated: Decimal
    recognized_to_date: Decimal
    contracts: tuple[ContractDeferral, ...] = ()

    @property
    def deferred(self) -> Decimal:
        return self.total_allocated - self.recognized_to_date


@dataclass(frozen=True)
class WaterfallRow:
    period_id: UUID
    period_name: str
    start_date: date
    end_date: date
    status: str
    scheduled_amount: Decimal
    posted_amount: Decimal

    @property
    def total_amount(self) -> Decimal:
        return self.scheduled_amount + self.posted_amount


@dataclass(frozen=True)
class ContractSummary:
    contract_id: UUID
    contract_number: str
    version_number: int
    customer_id: str
    ledger_id: str
    status: str
    currency: str
    total_transaction_price: Decimal
    effective_date: date


@dataclass(frozen=True)
class ContractDetail:
    contract: ContractInfo
    entries: tuple[ScheduleEntryInfo, ...]
    recognized_to_date: Decimal
    scheduled_remaining: Decimal

    @property
    def deferred(self) -> Decimal:
        return self.contract.total_allocated_price - self.recognized_to_date


# ============================================================================
# Selector
# ============================================================================


class RevenueSelector(BaseSelector[RevenueContract]):
    """Deferred revenue, waterfall and contract reads."""

    def deferred_revenue(
        self,
        as_of_date: date,
        ledger_id: str | None = None,
        contract_number: str | None = None,
    ) -> DeferredRevenueBalance:
        """
        ``total_allocated - recognized_to_date`` across live contract versions
        of contracts whose first version is effective on or before ``as_of_date``.

        A modified contract stays in the balance for dates before its
        modification took effect; it is reported at its live version.
        Recognized to date counts Posted entries dated on or before
        ``as_of_date``.
        """
        first_effective = (
            select(
                RevenueContract.contract_number,
                func.min(RevenueContract.effective_date).label("first_effective_date"),
            )
            .group_by(RevenueContract.contract_number)
            .subquery()
        )
        query = (
            select(RevenueContract)
            .join(
                first_effective,
                first_effective.c.contract_number == RevenueContract.contract_number,
            )
            .where(
                RevenueContract.status.in_(LIVE_CONTRACT_STATUSES),
                first_effective.c.first_effective_date <= as_of_date,
            )
        )
        if ledger_id is not None:
            query = query.where(RevenueContract.ledger_id == ledger_id)
        if contract_number is not None:
            query = query.where(RevenueContract.contract_number == contract_number)
        contracts = self.session.execute(
            query.order_by(RevenueContract.contract_number)
        ).scalars().all()

        recognized = self._recognized_by_contract([c.id for c in contracts], as_of_date)
        deferrals = tuple(
            ContractDeferral(
                contract_id=c.id,
                contract_number=c.contract_number,
                version_number=c.version_number,
                currency=c.currency,
                total_allocated=Decimal(c.total_allocated_price),
                recognized_to_date=recognized.get(c.id, ZERO),
            )
            for c in contracts
        )
        return DeferredRevenueBalance(
            as_of_date=as_of_date,
            ledger_id=ledger_id,
            total_allocated=sum((d.total_allocated for d in deferrals), ZERO),
            recognized_to_date=sum((d.recognized_to_date for d in deferrals), ZERO),
            contracts=deferrals,
        )

    def _recognized_by_contract(
        self,
        contract_ids: list[UUID],
        as_of_date: date,
    ) -> dict[UUID, Decimal]:
        if not contract_ids:
            return {}
        rows = self.session.execute(
            select(RecognitionScheduleEntry.contract_id, RecognitionScheduleEntry.amount).where(
                RecognitionScheduleEntry.contract_id.in_(contract_ids),
                RecognitionScheduleEntry.status == EntryStatus.POSTED,
                RecognitionScheduleEntry.schedule_date <= as_of_date,
            )
        ).all()
        totals: dict[UUID, Decimal] = {}
        for contract_id, amount in rows:
            totals[contract_id] = totals.get(contract_id, ZERO) + Decimal(amount)
        return totals

    def revenue_waterfall(
        self,
        ledger_id: str,
        start_date: date,
        end_date: date,
    ) -> list[WaterfallRow]:
        """Scheduled and posted revenue per period overlapping [start, end]."""
        periods = self.session.execute(
            select(Period)
            .where(
                Period.ledger_id == ledger_id,
                Period.start_date <= end_date,
                Period.end_date >= start_date,
            )
            .order_by(Period.start_date)
        ).scalars().all()
        if not periods:
            return []

        period_ids = [p.id for p in periods]
        live_ids = select(RevenueContract.id).where(
            RevenueContract.status.in_(LIVE_CONTRACT_STATUSES)
        )
        scheduled = dict(
            self.session.execute(
                select(RecognitionScheduleEntry.period_id, func.sum(RecognitionScheduleEntry.amount))
                .where(
                    RecognitionScheduleEntry.period_id.in_(period_ids),
                    RecognitionScheduleEntry.status == EntryStatus.SCHEDULED,
                    RecognitionScheduleEntry.contract_id.in_(live_ids),
                )
                .group_by(RecognitionScheduleEntry.period_id)
            ).all()
        )
        posted = dict(
            self.session.execute(
                select(PostableEntry.period_id, func.sum(PostableEntry.amount))
                .where(PostableEntry.period_id.in_(period_ids))
                .group_by(PostableEntry.period_id)
            ).all()
        )

        return [
            WaterfallRow(
                period_id=p.id,
                period_name=p.period_name,
                start_date=p.start_date,
                end_date=p.end_date,
                status=p.status.value,
                scheduled_amount=Decimal(scheduled.get(p.id) or ZERO),
                posted_amount=Decimal(posted.get(p.id) or ZERO),
            )
            for p in periods
        ]

    def contract_detail(
        self,
        contract_number: str,
        version_number: int | None = None,
    ) -> ContractDetail | None:
        """One contract version (default: the latest) with its schedule."""
        query = select(RevenueContract).where(
            RevenueContract.contract_number == contract_number
        )
        if version_number is not None:
            query = query.where(RevenueContract.version_number == version_number)
        contract = self.session.execute(
            query.order_by(RevenueContract.version_number.desc())
        ).scalars().first()
        if contract is None:
            return None

        entries = self.session.execute(
            select(RecognitionScheduleEntry)
            .where(RecognitionScheduleEntry.contract_id == contract.id)
            .order_by(RecognitionScheduleEntry.schedule_date, RecognitionScheduleEntry.created_at)
        ).scalars().all()

        return ContractDetail(
            contract=ContractInfo.from_model(contract),
            entries=tuple(ScheduleEntryInfo.from_model(e) for e in entries),
            recognized_to_date=sum(
                (Decimal(e.amount) for e in entries if e.status == EntryStatus.POSTED), ZERO
            ),
            scheduled_remaining=sum(
                (Decimal(e.amount) for e in entries if e.status == EntryStatus.SCHEDULED), ZERO
            ),
        )

    def list_contracts(
        self,
        ledger_id: str | None = None,
        status: ContractStatus | None = None,
        include_superseded: bool = False,
    ) -> list[ContractSummary]:
        query = select(RevenueContract)
        if ledger_id is not None:
            query = query.where(RevenueContract.ledger_id == ledger_id)
        if status is not None:
            query = query.where(RevenueContract.status == ContractStatus(status))
        elif not include_superseded:
            query = query.where(RevenueContract.status != ContractStatus.SUPERSEDED)
        query = query.order_by(RevenueContract.contract_number, RevenueContract.version_number)

        return [
            ContractSummary(
                contract_id=c.id,
                contract_number=c.contract_number,
                version_number=c.version_number,
                customer_id=c.customer_id,
                ledger_id=c.ledger_id,
                status=c.status.value,
                currency=c.currency,
                total_transaction_price=c.total_transaction_price,
                effective_date=c.effective_date,
            )
            for c in self.session.execute(query).scalars().all()
        ]
