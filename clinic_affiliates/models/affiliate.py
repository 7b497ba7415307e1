"""Affiliate (sales rep / influencer) model."""
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, DateTime, ForeignKey, Integer, BigInteger, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic_affiliates.database import Base

if TYPE_CHECKING:
    from clinic_affiliates.models.clinic import Clinic
    from clinic_affiliates.models.commission import AffiliatePlanAssignment


class AffiliateStatus(str, Enum):
    """Affiliate status enumeration."""
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    SUSPENDED = "SUSPENDED"
    INACTIVE = "INACTIVE"


class Affiliate(Base):
    """
    Affiliate / sales representative attached to a clinic.

    Lifetime counters are written only by the commission event processor,
    in the same transaction that creates the commission event.
    """
    __tablename__ = "affiliates"
    __table_args__ = (
        UniqueConstraint("clinic_id", "ref_code", name="uq_affiliate_clinic_ref_code"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    clinic_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("clinics.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    display_name: Mapped[str] = mapped_column(String(200), nullable=False)
    ref_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="ACTIVE",
        index=True
    )

    # Lifetime performance (drives tier qualification)
    lifetime_conversions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lifetime_revenue_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    clinic: Mapped["Clinic"] = relationship("Clinic", back_populates="affiliates")
    plan_assignments: Mapped[List["AffiliatePlanAssignment"]] = relationship(
        "AffiliatePlanAssignment",
        back_populates="affiliate",
        cascade="all, delete-orphan"
    )

    @property
    def is_active(self) -> bool:
        return self.status == AffiliateStatus.ACTIVE.value

    def __repr__(self) -> str:
        return f"<Affiliate(id={self.id}, clinic={self.clinic_id}, status='{self.status}')>"
