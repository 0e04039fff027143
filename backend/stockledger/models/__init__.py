from .directory import Branch, Product
from .auth import User, SessionToken
from .stock import StockRecord, StockMovement, StockTransfer
from .sales import SalesOrder, SalesOrderItem
from .service_orders import ServiceOrder, ServiceOrderPart
from .ledger import Transaction
from .documents import DocumentSequence

__all__ = [
    "Branch",
    "Product",
    "User",
    "SessionToken",
    "StockRecord",
    "StockMovement",
    "StockTransfer",
    "SalesOrder",
    "SalesOrderItem",
    "ServiceOrder",
    "ServiceOrderPart",
    "Transaction",
    "DocumentSequence",
]
