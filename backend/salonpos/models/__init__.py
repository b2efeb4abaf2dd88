from .inventory import Batch, StockRecord, InventoryMovement
from .promotions import Promotion, PromotionClientUsage
from .loyalty import LoyaltyAccount, LoyaltyTransaction
from .sales import Sale, SaleLine, SaleBatchAllocation, CommissionRecord
from .documents import LedgerEvent, DocumentSequence

__all__ = [
    'Batch', 'StockRecord', 'InventoryMovement',
    'Promotion', 'PromotionClientUsage',
    'LoyaltyAccount', 'LoyaltyTransaction',
    'Sale', 'SaleLine', 'SaleBatchAllocation', 'CommissionRecord',
    'LedgerEvent', 'DocumentSequence',
]
