"""
Database Migration: Invoice Payment Columns

Adds the columns and indexes the reconciliation engine relies on:
- paid_via_contract flag
- unique index on payment_tx_hash (one transaction settles one invoice)
- status/created_at index for the pending snapshot
"""

import asyncio
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import text
from database.connection import get_engine


SQL_STATEMENTS = [
    "ALTER TABLE public.invoices ADD COLUMN IF NOT EXISTS paid_via_contract BOOLEAN NOT NULL DEFAULT false",

    # Unique only among recorded hashes; unpaid rows carry NULL
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_invoices_payment_tx_hash
        ON public.invoices(payment_tx_hash)
        WHERE payment_tx_hash IS NOT NULL
    """,

    "CREATE INDEX IF NOT EXISTS ix_invoices_status_created ON public.invoices(status, created_at)",
]


async def create_indexes():
    """Apply the invoice payment migration."""
    print("Migrating invoices table for reconciliation...")
    engine = get_engine()
    async with engine.begin() as conn:
        for i, sql in enumerate(SQL_STATEMENTS):
            try:
                await conn.execute(text(sql))
                print(f"  ✓ Statement {i+1}/{len(SQL_STATEMENTS)} executed")
            except Exception as e:
                if "already exists" in str(e).lower():
                    print(f"  ✓ Statement {i+1}/{len(SQL_STATEMENTS)} (already exists)")
                else:
                    print(f"  ✗ Statement {i+1}/{len(SQL_STATEMENTS)} failed: {e}")
                    raise

    await engine.dispose()
    print("\n✅ Invoice payment migration complete!")


if __name__ == "__main__":
    asyncio.run(create_indexes())
