"""
SSPCatalogService -- standalone selling price books, lines and resolution.

Responsibility:
    Maintains named, currency-scoped, effective-dated SSP books and their
    item lines, and resolves the standalone selling price the allocator
    uses for an item on a date.

Architecture position:
    Services -- imperative shell over the SSP models.  Called by the
    contract service during allocation and by catalog maintenance callers.

Invariants enforced:
    - Resolution picks the latest eligible line with
      ``effective_from <= as_of_date`` in the named book, or in the
      designated default book when no book is named.
    - Only Active books resolve prices; at most one book is the default.
    - A line referenced by an allocated obligation is never edited; a new
      price arrives through ``supersede_line`` as a new effective-dated line.

Failure modes:
    - SSPNotFoundError: no eligible line for the item and date.
    - SSPBookNotFoundError: the named book (or a default book) does not
      exist.
    - SSPLineImmutableError: ``update_line`` on a referenced line.
    - ValueError: invalid book window, price, quantity band or currency.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from revrec_kernel.domain.clock import Clock, SystemClock
from revrec_kernel.domain.currency import CurrencyRegistry
from revrec_kernel.exceptions import (
    SSPBookNotFoundError,
    SSPLineImmutableError,
    SSPNotFoundError,
)
from revrec_kernel.logging_config import get_logger
from revrec_kernel.models.contract import ObligationStatus, PerformanceObligation
from revrec_kernel.models.ssp import SSPBook, SSPBookStatus, SSPLine
from revrec_kernel.services.base import BaseService

logger = get_logger("services.ssp_catalog")

ZERO = Decimal("0")

UPDATABLE_LINE_FIELDS = frozenset({
    "ssp_value",
    "effective_from",
    "min_quantity",
    "max_quantity",
    "region",
})


@dataclass(frozen=True)
class SSPBookInfo:
    id: UUID
    name: str
    currency: str
    effective_from: date
    effective_to: date | None
    status: str
    is_default: bool


@dataclass(frozen=True)
class SSPLineInfo:
    id: UUID
    book_id: UUID
    item_id: str
    ssp_value: Decimal
    effective_from: date
    min_quantity: Decimal
    max_quantity: Decimal | None
    region: str | None
    supersedes_id: UUID | None


@dataclass(frozen=True)
class SSPResolution:
    """The line a price was resolved from."""

    book_id: UUID
    line_id: UUID
    item_id: str
    ssp_value: Decimal
    effective_from: date
    currency: str


def _book_info(book: SSPBook) -> SSPBookInfo:
    return SSPBookInfo(
        id=book.id,
        name=book.name,
        currency=book.currency,
        effective_from=book.effective_from,
        effective_to=book.effective_to,
        status=book.status.value,
        is_default=book.is_default,
    )


def _line_info(line: SSPLine) -> SSPLineInfo:
    return SSPLineInfo(
        id=line.id,
        book_id=line.book_id,
        item_id=line.item_id,
        ssp_value=line.ssp_value,
        effective_from=line.effective_from,
        min_quantity=line.min_quantity,
        max_quantity=line.max_quantity,
        region=line.region,
        supersedes_id=line.supersedes_id,
    )


class SSPCatalogService(BaseService[SSPBook]):
    """
    Service for SSP book maintenance and price resolution.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT translate currencies; a book prices in its own currency.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Books
    # ------------------------------------------------------------------

    def create_book(
        self,
        name: str,
        currency: str,
        effective_from: date,
        actor_id: UUID,
        effective_to: date | None = None,
        status: SSPBookStatus = SSPBookStatus.ACTIVE,
        is_default: bool = False,
    ) -> SSPBookInfo:
        """Create a price book, optionally designating it the default."""
        if effective_to is not None and effective_to < effective_from:
            raise ValueError(
                f"effective_to ({effective_to}) cannot be before effective_from ({effective_from})"
            )

        book = SSPBook(
            name=name,
            currency=CurrencyRegistry.validate(currency),
            effective_from=effective_from,
            effective_to=effective_to,
            status=status,
            is_default=False,
            created_by_id=actor_id,
        )
        self.session.add(book)
        self.session.flush()

        logger.info(
            "ssp_book_created",
            extra={"book_id": str(book.id), "book_name": name, "currency": book.currency},
        )

        if is_default:
            return self.set_default_book(book.id, actor_id)
        return _book_info(book)

    def activate_book(self, book_id: UUID, actor_id: UUID) -> SSPBookInfo:
        """Draft -> Active."""
        book = self._get_book(book_id)
        if book.status != SSPBookStatus.DRAFT:
            raise ValueError(f"Only Draft books can be activated; book is {book.status.value}")
        book.status = SSPBookStatus.ACTIVE
        book.updated_by_id = actor_id
        self.session.flush()
        logger.info("ssp_book_activated", extra={"book_id": str(book_id)})
        return _book_info(book)

    def set_default_book(self, book_id: UUID, actor_id: UUID) -> SSPBookInfo:
        """Designate an Active book as the default for its currency; clears the previous one."""
        book = self._get_book(book_id)
        if not book.is_active:
            raise ValueError(f"Only Active books can be the default; book is {book.status.value}")

        previous = self.session.execute(
            select(SSPBook).where(
                SSPBook.is_default.is_(True),
                SSPBook.currency == book.currency,
                SSPBook.id != book.id,
            )
        ).scalars().all()
        for other in previous:
            other.is_default = False
            other.updated_by_id = actor_id

        book.is_default = True
        book.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "ssp_default_book_set",
            extra={
                "book_id": str(book_id),
                "currency": book.currency,
                "previous_default_ids": [str(b.id) for b in previous],
            },
        )
        return _book_info(book)

    def archive_book(self, book_id: UUID, actor_id: UUID) -> SSPBookInfo:
        """Archive a book; it stops resolving prices and loses default status."""
        book = self._get_book(book_id)
        book.status = SSPBookStatus.ARCHIVED
        book.is_default = False
        book.updated_by_id = actor_id
        self.session.flush()
        logger.info("ssp_book_archived", extra={"book_id": str(book_id)})
        return _book_info(book)

    def get_book(self, book_id: UUID) -> SSPBookInfo:
        return _book_info(self._get_book(book_id))

    def get_default_book(self, currency: str | None = None) -> SSPBookInfo:
        return _book_info(self._get_default_book(currency))

    # ------------------------------------------------------------------
    # Lines
    # ------------------------------------------------------------------

    def add_line(
        self,
        book_id: UUID,
        item_id: str,
        ssp_value: Decimal,
        effective_from: date,
        actor_id: UUID,
        min_quantity: Decimal = ZERO,
        max_quantity: Decimal | None = None,
        region: str | None = None,
        supersedes_id: UUID | None = None,
    ) -> SSPLineInfo:
        """Add an item price to a book."""
        book = self._get_book(book_id)
        if book.status == SSPBookStatus.ARCHIVED:
            raise ValueError(f"Cannot add lines to archived book {book.name}")
        self._validate_line(ssp_value, min_quantity, max_quantity)

        line = SSPLine(
            book_id=book.id,
            item_id=item_id,
            ssp_value=ssp_value,
            effective_from=effective_from,
            min_quantity=min_quantity,
            max_quantity=max_quantity,
            region=region,
            supersedes_id=supersedes_id,
            created_by_id=actor_id,
        )
        self.session.add(line)
        self.session.flush()

        logger.info(
            "ssp_line_added",
            extra={
                "book_id": str(book_id),
                "line_id": str(line.id),
                "item_id": item_id,
                "ssp_value": str(ssp_value),
                "effective_from": str(effective_from),
            },
        )
        return _line_info(line)

    def list_lines(self, book_id: UUID, item_id: str | None = None) -> list[SSPLineInfo]:
        self._get_book(book_id)
        query = select(SSPLine).where(SSPLine.book_id == book_id)
        if item_id is not None:
            query = query.where(SSPLine.item_id == item_id)
        query = query.order_by(SSPLine.item_id, SSPLine.effective_from, SSPLine.min_quantity)
        return [_line_info(line) for line in self.session.execute(query).scalars().all()]

    def supersede_line(
        self,
        line_id: UUID,
        new_value: Decimal,
        effective_from: date,
        actor_id: UUID,
    ) -> SSPLineInfo:
        """
        Price change through a new effective-dated line.

        The new line keeps the item, quantity band and region of the old
        one.  The old line is left untouched and keeps answering dates
        before ``effective_from``.
        """
        old = self._get_line(line_id)
        if effective_from <= old.effective_from:
            raise ValueError(
                f"Superseding line must take effect after {old.effective_from}, "
                f"got {effective_from}"
            )
        return self.add_line(
            book_id=old.book_id,
            item_id=old.item_id,
            ssp_value=new_value,
            effective_from=effective_from,
            actor_id=actor_id,
            min_quantity=old.min_quantity,
            max_quantity=old.max_quantity,
            region=old.region,
            supersedes_id=old.id,
        )

    def update_line(self, line_id: UUID, actor_id: UUID, **changes) -> SSPLineInfo:
        """
        Edit a line that no allocation references yet.

        Raises:
            SSPLineImmutableError: If an allocated obligation used the line.
            ValueError: On an unknown field or invalid value.
        """
        unknown = set(changes) - UPDATABLE_LINE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update SSP line fields: {sorted(unknown)}")

        line = self._get_line(line_id)
        if self.is_line_referenced(line_id):
            logger.warning("ssp_line_update_blocked", extra={"line_id": str(line_id)})
            raise SSPLineImmutableError(str(line_id))

        for field_name, value in changes.items():
            setattr(line, field_name, value)
        self._validate_line(line.ssp_value, line.min_quantity, line.max_quantity)
        line.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "ssp_line_updated",
            extra={"line_id": str(line_id), "fields": sorted(changes)},
        )
        return _line_info(line)

    def is_line_referenced(self, line_id: UUID) -> bool:
        return bool(self.session.execute(
            select(
                exists().where(
                    PerformanceObligation.ssp_line_id == line_id,
                    PerformanceObligation.status != ObligationStatus.UNALLOCATED,
                )
            )
        ).scalar())

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_ssp(
        self,
        item_id: str,
        as_of_date: date,
        book_id: UUID | None = None,
        quantity: Decimal | None = None,
        region: str | None = None,
        currency: str | None = None,
    ) -> SSPResolution:
        """
        Resolve an item's standalone selling price on a date.

        Among lines whose quantity band accepts ``quantity`` and whose region
        is unset or equal to ``region``, the latest ``effective_from`` wins;
        on a tie a region-specific line beats a region-less one, then the
        highest breakpoint wins.

        With ``currency`` set, the default book is the one for that currency
        and a book priced in any other currency resolves nothing.

        Raises:
            SSPBookNotFoundError: If the book (or a default book) is missing.
            SSPNotFoundError: If no line is eligible or the book currency differs.
        """
        book = self._get_book(book_id) if book_id is not None else self._get_default_book(currency)
        book_ref = str(book.id)

        if currency is not None and book.currency != currency:
            logger.warning(
                "ssp_not_found",
                extra={
                    "item_id": item_id,
                    "as_of_date": str(as_of_date),
                    "book_id": book_ref,
                    "reason": f"book prices in {book.currency}, not {currency}",
                },
            )
            raise SSPNotFoundError(item_id, as_of_date, book_ref)

        if not book.is_active or not book.covers(as_of_date):
            logger.warning(
                "ssp_not_found",
                extra={
                    "item_id": item_id,
                    "as_of_date": str(as_of_date),
                    "book_id": book_ref,
                    "reason": "book inactive or outside its effective window",
                },
            )
            raise SSPNotFoundError(item_id, as_of_date, book_ref)

        candidates = self.session.execute(
            select(SSPLine).where(
                SSPLine.book_id == book.id,
                SSPLine.item_id == item_id,
                SSPLine.effective_from <= as_of_date,
            )
        ).scalars().all()

        eligible = [
            line for line in candidates
            if line.accepts_quantity(quantity)
            and (line.region is None or line.region == region)
        ]
        if not eligible:
            logger.warning(
                "ssp_not_found",
                extra={
                    "item_id": item_id,
                    "as_of_date": str(as_of_date),
                    "book_id": book_ref,
                    "candidate_count": len(candidates),
                },
            )
            raise SSPNotFoundError(item_id, as_of_date, book_ref)

        chosen = max(
            eligible,
            key=lambda line: (line.effective_from, line.region is not None, line.min_quantity),
        )

        logger.debug(
            "ssp_resolved",
            extra={
                "item_id": item_id,
                "as_of_date": str(as_of_date),
                "line_id": str(chosen.id),
                "ssp_value": str(chosen.ssp_value),
            },
        )
        return SSPResolution(
            book_id=book.id,
            line_id=chosen.id,
            item_id=item_id,
            ssp_value=chosen.ssp_value,
            effective_from=chosen.effective_from,
            currency=book.currency,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_line(
        ssp_value: Decimal,
        min_quantity: Decimal,
        max_quantity: Decimal | None,
    ) -> None:
        if ssp_value < ZERO:
            raise ValueError(f"SSP value cannot be negative: {ssp_value}")
        if min_quantity < ZERO:
            raise ValueError(f"min_quantity cannot be negative: {min_quantity}")
        if max_quantity is not None and max_quantity < min_quantity:
            raise ValueError(
                f"max_quantity ({max_quantity}) cannot be below min_quantity ({min_quantity})"
            )

    def _get_book(self, book_id: UUID) -> SSPBook:
        book = self.session.get(SSPBook, book_id)
        if book is None:
            raise SSPBookNotFoundError(str(book_id))
        return book

    def _get_default_book(self, currency: str | None = None) -> SSPBook:
        query = select(SSPBook).where(
            SSPBook.is_default.is_(True),
            SSPBook.status == SSPBookStatus.ACTIVE,
        )
        if currency is not None:
            query = query.where(SSPBook.currency == currency)
        book = self.session.execute(query.order_by(SSPBook.created_at)).scalars().first()
        if book is None:
            raise SSPBookNotFoundError(None)
        return book

    def _get_line(self, line_id: UUID) -> SSPLine:
        line = self.session.get(SSPLine, line_id)
        if line is None:
            raise SSPNotFoundError(f"line {line_id}", "any date")
        return line
