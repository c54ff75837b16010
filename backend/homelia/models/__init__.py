from .auth import User
from .security import SecurityEvent
from .catalog import Product
from .orders import Order, OrderItem, OrderStatusHistory
from .quotes import Quote, QuoteItem
from .samples import SampleRequest, SampleRequestItem
from .documents import SequenceCounter, Invoice
from .notifications import Notification

__all__ = [
    'User', 'SecurityEvent',
    'Product',
    'Order', 'OrderItem', 'OrderStatusHistory',
    'Quote', 'QuoteItem',
    'SampleRequest', 'SampleRequestItem',
    'SequenceCounter', 'Invoice',
    'Notification',
]
