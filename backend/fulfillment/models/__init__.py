from .catalog import CardProduct
from .cards import CardUnit, CardBatch
from .wallets import Wallet, WalletTransaction, WalletTopUpRequest
from .orders import CardOrder, CardOrderItem, CardDelivery, CardOrderEvent

__all__ = [
    'CardProduct',
    'CardUnit', 'CardBatch',
    'Wallet', 'WalletTransaction', 'WalletTopUpRequest',
    'CardOrder', 'CardOrderItem', 'CardDelivery', 'CardOrderEvent',
]
