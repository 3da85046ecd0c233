from .users import User
from .inventory import Category, Product, StockHistory
from .customers import Customer, LoyaltyHistory
from .invoices import Invoice, InvoiceItem
from .returns import ReturnOrder, ReturnItem
from .audit import ActivityLog
from .settings import StoreSetting

__all__ = [
    'User',
    'Category', 'Product', 'StockHistory',
    'Customer', 'LoyaltyHistory',
    'Invoice', 'InvoiceItem',
    'ReturnOrder', 'ReturnItem',
    'ActivityLog',
    'StoreSetting',
]
