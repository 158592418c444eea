from .auctions import Auction, Item, Bidder, AUCTION_STATUSES
from .payments import Payment, PaymentIntent, INTENT_CHANNELS, INTENT_STATUSES, INTENT_TERMINAL_STATUSES
from .audit import AuditLogEntry

__all__ = [
    'Auction', 'Item', 'Bidder', 'AUCTION_STATUSES',
    'Payment', 'PaymentIntent', 'INTENT_CHANNELS', 'INTENT_STATUSES', 'INTENT_TERMINAL_STATUSES',
    'AuditLogEntry',
]
