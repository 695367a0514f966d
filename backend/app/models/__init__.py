from .accounts import Account
from .orders import Order
from .inventory import Product, StockMovement

__all__ = [
    'Account',
    'Order',
    'Product', 'StockMovement',
]
