"""Payer rate table and its append-only change history."""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_engine.models.base import Base, TimestampMixin


class Insurance(Base, TimestampMixin):
    """Payer rate table.

    Regular and BCBA timesheets carry independent (rate, unit size) pairs;
    ``rate_per_unit`` is the legacy single rate used as the last fallback.
    """

    __tablename__ = "insurance"

    insurance_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    rate_per_unit: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    regular_rate_per_unit: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    regular_unit_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bcba_rate_per_unit: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    bcba_unit_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "regular_unit_minutes IS NULL OR regular_unit_minutes > 0",
            name="insurance_regular_unit_check",
        ),
        CheckConstraint(
            "bcba_unit_minutes IS NULL OR bcba_unit_minutes > 0",
            name="insurance_bcba_unit_check",
        ),
    )

    # Relationships
    rate_history: Mapped[list[InsuranceRateHistory]] = relationship(
        back_populates="insurance",
        order_by="InsuranceRateHistory.created_at",
    )


class InsuranceRateHistory(Base, TimestampMixin):
    """Append-only log of rate table changes."""

    __tablename__ = "insurance_rate_history"

    history_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    insurance_id: Mapped[UUID] = mapped_column(
        ForeignKey("insurance.insurance_id"),
        nullable=False,
    )
    field: Mapped[str] = mapped_column(String, nullable=False)
    old_value: Mapped[str | None] = mapped_column(String, nullable=True)
    new_value: Mapped[str | None] = mapped_column(String, nullable=True)
    changed_by: Mapped[UUID | None] = mapped_column(nullable=True)

    # Relationships
    insurance: Mapped[Insurance] = relationship(back_populates="rate_history")
