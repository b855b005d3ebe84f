"""
SafeCall Provider Marketplace - Database Schema
===============================================

Schema for the Telegram-based marketplace where requesters buy paid,
time-bounded services from providers with funds held in escrow:
- Accounts with a materialized balance backed by an append-only ledger
- Provider service catalog
- Orders with an audited status history
- Withdrawal requests processed by operators

Amounts are stored as integer minor units (cents).
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from sqlalchemy import (
    Integer, BigInteger, String, DateTime, Boolean, Text,
    ForeignKey, Index, CheckConstraint
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# ============================================================================
# ENUMS - Business Logic Constants
# ============================================================================

class AccountRole(Enum):
    """Participant roles"""
    PROVIDER = "provider"
    REQUESTER = "requester"
    OPERATOR = "operator"


class ApprovalStatus(Enum):
    """Provider approval lifecycle"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ServiceCategory(Enum):
    """Kinds of service a provider can offer"""
    SESSION = "session"
    DELIVERABLE = "deliverable"
    OTHER = "other"


class OrderStatus(Enum):
    """Order lifecycle states"""
    PENDING = "pending"
    PENDING_PAYMENT = "pending_payment"
    ACCEPTED = "accepted"
    IN_CALL = "in_call"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(Enum):
    """Where the order's money currently is"""
    UNPAID = "unpaid"
    PAID = "paid"          # confirmed by an external payment event
    HELD = "held"          # held from the requester's internal balance
    RELEASED = "released"  # base paid out to the provider
    REFUNDED = "refunded"  # hold returned to the requester


class LedgerEntryKind(Enum):
    """Append-only ledger entry kinds"""
    TOPUP = "topup"
    HOLD = "hold"
    RELEASE = "release"
    WITHDRAW = "withdraw"


class WithdrawalStatus(Enum):
    REQUESTED = "requested"
    PROCESSED = "processed"


class FlowKind(Enum):
    """Guided data-entry conversations"""
    NEW_ORDER = "new_order"
    NEW_SERVICE = "new_service"
    EDIT_PROFILE = "edit_profile"
    REPORT_PROBLEM = "report_problem"


# Balance direction for each ledger entry kind
LEDGER_ENTRY_SIGNS = {
    LedgerEntryKind.TOPUP.value: 1,
    LedgerEntryKind.RELEASE.value: 1,
    LedgerEntryKind.HOLD.value: -1,
    LedgerEntryKind.WITHDRAW.value: -1,
}


# ============================================================================
# CORE ENTITIES
# ============================================================================

class Account(Base):
    """One participant - created on first contact, never deleted"""
    __tablename__ = 'accounts'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    telegram_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    username: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    # Role is unset until the user picks one on /start
    role: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    balance_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Provider-only attributes
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    approval_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    photo_file_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    terms_accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    __table_args__ = (
        Index('ix_accounts_telegram_id', 'telegram_id', unique=True),
        CheckConstraint('balance_cents >= 0', name='ck_account_balance_non_negative'),
        CheckConstraint("role IN ('provider', 'requester', 'operator')", name='ck_account_role_valid'),
    )

    @property
    def is_provider(self) -> bool:
        return self.role == AccountRole.PROVIDER.value

    @property
    def is_requester(self) -> bool:
        return self.role == AccountRole.REQUESTER.value

    @property
    def is_operator(self) -> bool:
        return self.role == AccountRole.OPERATOR.value

    @property
    def is_approved(self) -> bool:
        return self.approval_status == ApprovalStatus.APPROVED.value

    @property
    def label(self) -> str:
        """Name shown to other participants"""
        if self.display_name:
            return self.display_name
        if self.username:
            return f"@{self.username}"
        return f"Account #{self.id}"

    def __repr__(self):
        return f"<Account(id={self.id}, telegram_id={self.telegram_id}, role={self.role})>"


class Service(Base):
    """Something a provider offers - owned by exactly one provider"""
    __tablename__ = 'services'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provider_id: Mapped[int] = mapped_column(Integer, ForeignKey('accounts.id'), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    duration_min: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    __table_args__ = (
        Index('ix_services_provider_active', 'provider_id', 'is_active'),
        CheckConstraint('price_cents > 0', name='ck_service_price_positive'),
        CheckConstraint('duration_min IS NULL OR duration_min > 0', name='ck_service_duration_positive'),
        CheckConstraint("category IN ('session', 'deliverable', 'other')", name='ck_service_category_valid'),
    )

    def __repr__(self):
        return f"<Service(id={self.id}, provider_id={self.provider_id}, name={self.name!r})>"


class Order(Base):
    """Central entity - mutated only through OrderService transitions, never deleted"""
    __tablename__ = 'orders'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    requester_id: Mapped[int] = mapped_column(Integer, ForeignKey('accounts.id'), nullable=False)
    # Provider chosen by the requester (None = open to any approved provider)
    requested_provider_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey('accounts.id'), nullable=True)
    # Provider bound on acceptance
    provider_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey('accounts.id'), nullable=True)
    service_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey('services.id', ondelete='SET NULL'), nullable=True
    )

    # Snapshot of the service at creation time
    service_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    category: Mapped[str] = mapped_column(String(20), nullable=False)

    # Amounts - fixed at creation, never recomputed
    base_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    fee_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False)

    status: Mapped[str] = mapped_column(String(20), default=OrderStatus.PENDING.value, nullable=False)
    payment_status: Mapped[str] = mapped_column(String(20), default=PaymentStatus.UNPAID.value, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    session_url: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    cancel_reason: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Post-completion feedback
    rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    problem_report: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    reminded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)

    __table_args__ = (
        CheckConstraint('total_cents = base_cents + fee_cents', name='ck_order_total_equals_sum'),
        CheckConstraint('base_cents > 0', name='ck_order_base_positive'),
        CheckConstraint('fee_cents >= 0', name='ck_order_fee_non_negative'),
        CheckConstraint(
            "status IN ('pending', 'pending_payment', 'accepted', 'in_call', 'completed', 'cancelled')",
            name='ck_order_status_valid'
        ),
        CheckConstraint('rating IS NULL OR (rating >= 1 AND rating <= 5)', name='ck_order_rating_range'),
        Index('ix_orders_status_created', 'status', 'created_at'),
        Index('ix_orders_status_expires', 'status', 'expires_at'),
        Index('ix_orders_requester', 'requester_id'),
    )

    def __repr__(self):
        return f"<Order(id={self.id}, status={self.status}, total_cents={self.total_cents})>"


class OrderStatusHistory(Base):
    """Audit trail - one row per order status change"""
    __tablename__ = 'order_status_history'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey('orders.id'), nullable=False)
    from_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    event: Mapped[str] = mapped_column(String(30), nullable=False)
    actor_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    __table_args__ = (
        Index('ix_order_status_history_order', 'order_id', 'id'),
    )


class LedgerEntry(Base):
    """Append-only money movement record - never mutated or deleted"""
    __tablename__ = 'ledger_entries'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, ForeignKey('accounts.id'), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    related_order_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey('orders.id'), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    __table_args__ = (
        CheckConstraint('amount_cents > 0', name='ck_ledger_amount_positive'),
        CheckConstraint("kind IN ('topup', 'hold', 'release', 'withdraw')", name='ck_ledger_kind_valid'),
        Index('ix_ledger_entries_account', 'account_id', 'id'),
        Index('ix_ledger_entries_order', 'related_order_id'),
    )

    @property
    def signed_amount(self) -> int:
        return LEDGER_ENTRY_SIGNS[self.kind] * self.amount_cents


class Withdrawal(Base):
    """Payout request - funds already left the balance via a withdraw entry"""
    __tablename__ = 'withdrawals'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, ForeignKey('accounts.id'), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=WithdrawalStatus.REQUESTED.value, nullable=False)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    processed_by: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey('accounts.id'), nullable=True)

    __table_args__ = (
        CheckConstraint('amount_cents > 0', name='ck_withdrawal_amount_positive'),
        Index('ix_withdrawals_status', 'status'),
    )
