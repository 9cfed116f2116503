from .tenancy import Business, Branch
from .auth import StaffMember, SessionToken
from .inventory import Product, StockMovement
from .sales import Sale, SaleLine, ReceiptSequence, ImmutableRecordError
from .security import SecurityEvent

__all__ = [
    'Business', 'Branch',
    'StaffMember', 'SessionToken',
    'Product', 'StockMovement',
    'Sale', 'SaleLine', 'ReceiptSequence', 'ImmutableRecordError',
    'SecurityEvent',
]
