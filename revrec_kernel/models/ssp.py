"""
Module: revrec_kernel.models.ssp
Responsibility: ORM persistence for the standalone selling price catalog --
    named, currency-scoped, effective-dated price books and their item lines.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - An SSP line referenced by an allocated obligation is never edited;
      new prices arrive as a new effective-dated line (db/immutability.py).
    - At most one Active book is flagged as the default (service layer).

Audit relevance:
    Every allocated obligation records the SSP line it was priced from, so
    the standalone value behind an allocation can always be reproduced.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, Date, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from revrec_kernel.db.base import EnumString, TrackedBase, UUIDString


class SSPBookStatus(str, Enum):
    """Lifecycle status of an SSP book."""

    DRAFT = "Draft"
    ACTIVE = "Active"
    ARCHIVED = "Archived"


class SSPBook(TrackedBase):
    """
    A named price list (e.g. "FY2026 Global SSP").

    Only Active books are used for resolution.  The default book answers
    resolutions that do not name a book.
    """

    __tablename__ = "ssp_books"
    __table_args__ = (
        Index("idx_ssp_book_default", "is_default"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)

    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    effective_from: Mapped[date] = mapped_column(Date, nullable=False)

    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)

    status: Mapped[SSPBookStatus] = mapped_column(
        EnumString(SSPBookStatus),
        nullable=False,
        default=SSPBookStatus.ACTIVE,
    )

    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    lines: Mapped[list["SSPLine"]] = relationship(
        back_populates="book",
        order_by="SSPLine.effective_from",
    )

    def __repr__(self) -> str:
        return f"<SSPBook {self.name} ({self.status})>"

    @property
    def is_active(self) -> bool:
        return self.status == SSPBookStatus.ACTIVE

    def covers(self, as_of: date) -> bool:
        """Check whether the book's effective window contains a date."""
        if as_of < self.effective_from:
            return False
        return self.effective_to is None or as_of <= self.effective_to


class SSPLine(TrackedBase):
    """
    One item's standalone selling price in a book.

    ``min_quantity``/``max_quantity`` form an optional volume breakpoint
    band; ``region`` optionally narrows the line to one sales region.
    """

    __tablename__ = "ssp_lines"
    __table_args__ = (
        Index("idx_ssp_line_lookup", "book_id", "item_id", "effective_from"),
    )

    book_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("ssp_books.id"),
        nullable=False,
    )

    item_id: Mapped[str] = mapped_column(String(100), nullable=False)

    ssp_value: Mapped[Decimal] = mapped_column(nullable=False)

    effective_from: Mapped[date] = mapped_column(Date, nullable=False)

    min_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    max_quantity: Mapped[Decimal | None] = mapped_column(nullable=True)

    region: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Line this one replaced, when created through supersede_line
    supersedes_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    book: Mapped[SSPBook] = relationship(back_populates="lines")

    def __repr__(self) -> str:
        return f"<SSPLine {self.item_id} {self.ssp_value} from {self.effective_from}>"

    def accepts_quantity(self, quantity: Decimal | None) -> bool:
        """Check whether a quantity falls in this line's breakpoint band."""
        if quantity is None:
            return True
        if quantity < self.min_quantity:
            return False
        return self.max_quantity is None or quantity <= self.max_quantity
