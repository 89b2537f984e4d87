from .auth import User, SessionToken
from .catalog import Product, Shop
from .orders import Order, OrderItem, Payment
from .audit import OrderLog, PaymentLog, ShopLog, ProductLog

__all__ = [
    'User', 'SessionToken',
    'Product', 'Shop',
    'Order', 'OrderItem', 'Payment',
    'OrderLog', 'PaymentLog', 'ShopLog', 'ProductLog',
]
