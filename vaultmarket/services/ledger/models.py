"""Ledger database models for seller balances and payout requests."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import CheckConstraint, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from vaultmarket.common.db import Base


class SellerBalance(Base):
    """Running per-seller balance, one row per seller, created on first credit."""

    __tablename__ = "seller_balances"
    __table_args__ = (
        CheckConstraint("pending_amount >= 0", name="ck_seller_balances_pending_non_negative"),
        CheckConstraint("available_amount >= 0", name="ck_seller_balances_available_non_negative"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    pending_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    available_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class PayoutRequest(Base):
    """Seller withdrawal of available funds, settled out of band by an admin."""

    __tablename__ = "payout_requests"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(String, index=True)
    amount: Mapped[int] = mapped_column(Integer)
    method: Mapped[str] = mapped_column(String)
    status: Mapped[str] = mapped_column(String, default="pending", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
