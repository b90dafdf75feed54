from .auth import User, SessionToken
from .inventory import Book, StockHistoryEntry
from .students import Student
from .suppliers import Supplier, SupplyOrder, SupplyOrderItem, SupplierPayment
from .sales import Receipt, ReceiptLine, ReceiptPayment
from .documents import DocumentSequence

__all__ = [
    'User', 'SessionToken',
    'Book', 'StockHistoryEntry',
    'Student',
    'Supplier', 'SupplyOrder', 'SupplyOrderItem', 'SupplierPayment',
    'Receipt', 'ReceiptLine', 'ReceiptPayment',
    'DocumentSequence',
]
