from .connection import get_db, get_engine, get_session_factory, init_db, Base

from .invoice_models import InvoiceDB, InvoiceStatus

__all__ = [
    'get_db', 'get_engine', 'get_session_factory', 'init_db', 'Base',
    'InvoiceDB', 'InvoiceStatus',
]
