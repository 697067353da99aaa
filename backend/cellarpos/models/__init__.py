from .enums import ProductCategory, UnitType, PaymentMethod, CrateTransactionType, UserRole
from .auth import User, SessionToken, SecurityEvent
from .inventory import Product, Delivery, DeliveryItem
from .sales import Sale, SaleItem
from .crates import CrateEntry
from .documents import DocumentSequence

__all__ = [
    'ProductCategory', 'UnitType', 'PaymentMethod', 'CrateTransactionType', 'UserRole',
    'User', 'SessionToken', 'SecurityEvent',
    'Product', 'Delivery', 'DeliveryItem',
    'Sale', 'SaleItem',
    'CrateEntry',
    'DocumentSequence',
]
