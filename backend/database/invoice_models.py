"""
Crypto Invoice Core - Invoice Database Model

The invoices table is owned by the merchant-facing application; this
service reads pending rows and performs the single UNPAID -> PAID
transition when an on-chain payment is found.

Tables:
- invoices: merchant invoices payable in ETH or ERC-20 stablecoins
"""

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, String, Text, Boolean, DateTime, Index, Numeric
)

from database.connection import Base


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ==================== ENUMS ====================

class InvoiceStatus(str, PyEnum):
    """Invoice payment status"""
    UNPAID = "UNPAID"
    PAID = "PAID"
    OVERDUE = "OVERDUE"  # Set by due-date expiry, never by reconciliation


# ==================== DATABASE MODELS ====================

class InvoiceDB(Base):
    """
    Merchant invoice.

    payment_tx_hash is unique across the table: a transaction can
    settle exactly one invoice.
    """
    __tablename__ = "invoices"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    invoice_number = Column(String(32), nullable=False, unique=True)
    user_id = Column(String(64), nullable=True, index=True)

    # Amount is stored exactly; never read it into a float
    amount = Column(Numeric(36, 18, asdecimal=True), nullable=False)
    currency = Column(String(10), nullable=False)
    description = Column(Text, nullable=True)
    due_date = Column(DateTime(timezone=True), nullable=True)

    client_name = Column(Text, nullable=True)
    client_email = Column(Text, nullable=True)
    client_wallet = Column(String(64), nullable=True)

    # Reconciliation fields
    payment_address = Column(String(64), nullable=True)
    status = Column(String(10), nullable=False, default=InvoiceStatus.UNPAID.value, index=True)
    payment_tx_hash = Column(String(80), nullable=True, unique=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    paid_via_contract = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index("ix_invoices_status_created", "status", "created_at"),
    )

    def __repr__(self):
        return f"<InvoiceDB {self.invoice_number} {self.status} {self.amount} {self.currency}>"
