from .auth import User, Token
from .files import FileMetadata
from .business import Business, MenuImage
from .items import ItemDefinition, OwnedItem
from .cards import VirtualCard, LocalCard
from .transactions import Transaction, TransactionDetail

__all__ = [
    'User', 'Token',
    'FileMetadata',
    'Business', 'MenuImage',
    'ItemDefinition', 'OwnedItem',
    'VirtualCard', 'LocalCard',
    'Transaction', 'TransactionDetail',
]
