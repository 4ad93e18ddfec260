"""
Invoice store used by the reconciliation engine.

Three operations only: read the pending snapshot, read every hash
already recorded, and the conditional UNPAID -> PAID write. The write is
the correctness boundary between concurrent passes, including passes in
other processes.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Protocol, Set

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from database.invoice_models import InvoiceDB, InvoiceStatus
from reconciliation.models import PendingInvoice
from reconciliation.source_registry import MarkPaidOutcome

logger = logging.getLogger(__name__)


class InvoiceStore(Protocol):

    async def find_pending_with_address(self) -> List[PendingInvoice]:
        ...

    async def find_all_paid_tx_hashes(self) -> Set[str]:
        ...

    async def mark_paid(
        self,
        invoice_id: str,
        tx_hash: str,
        paid_at: datetime,
        via_contract: bool = False
    ) -> MarkPaidOutcome:
        ...


class SqlAlchemyInvoiceStore:
    """
    Invoice store backed by the invoices table.

    Each call runs in its own session so one failed write cannot poison
    the rest of the pass.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def find_pending_with_address(self) -> List[PendingInvoice]:
        query = (
            select(
                InvoiceDB.id,
                InvoiceDB.invoice_number,
                InvoiceDB.amount,
                InvoiceDB.currency,
                InvoiceDB.payment_address,
                InvoiceDB.created_at,
            )
            .where(
                InvoiceDB.status == InvoiceStatus.UNPAID.value,
                InvoiceDB.payment_address.is_not(None),
                InvoiceDB.payment_address != "",
            )
            .order_by(InvoiceDB.created_at.asc(), InvoiceDB.invoice_number.asc())
        )

        async with self.session_factory() as session:
            result = await session.execute(query)
            rows = result.all()

        return [
            PendingInvoice(
                id=str(row.id),
                invoice_number=row.invoice_number,
                amount=row.amount if isinstance(row.amount, Decimal) else Decimal(str(row.amount)),
                currency=row.currency,
                payment_address=row.payment_address,
                created_at=row.created_at,
            )
            for row in rows
        ]

    async def find_all_paid_tx_hashes(self) -> Set[str]:
        query = select(InvoiceDB.payment_tx_hash).where(InvoiceDB.payment_tx_hash.is_not(None))

        async with self.session_factory() as session:
            result = await session.execute(query)
            return {row[0] for row in result.all()}

    async def mark_paid(
        self,
        invoice_id: str,
        tx_hash: str,
        paid_at: datetime,
        via_contract: bool = False
    ) -> MarkPaidOutcome:
        """
        Mark an invoice paid only if it is still UNPAID with no hash.

        Returns ALREADY_CHANGED when another pass got there first, either
        on this invoice or by recording the same hash on another one.
        """
        statement = (
            update(InvoiceDB)
            .where(
                InvoiceDB.id == invoice_id,
                InvoiceDB.status == InvoiceStatus.UNPAID.value,
                InvoiceDB.payment_tx_hash.is_(None),
            )
            .values(
                status=InvoiceStatus.PAID.value,
                payment_tx_hash=tx_hash,
                paid_at=paid_at,
                paid_via_contract=via_contract,
                updated_at=paid_at,
            )
            .execution_options(synchronize_session=False)
        )

        async with self.session_factory() as session:
            try:
                result = await session.execute(statement)
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.warning(
                    f"Transaction {tx_hash} already recorded on another invoice; "
                    f"leaving invoice {invoice_id} unpaid"
                )
                return MarkPaidOutcome.ALREADY_CHANGED

        if result.rowcount == 1:
            return MarkPaidOutcome.UPDATED
        return MarkPaidOutcome.ALREADY_CHANGED
