# Overview: Immutable draft-cart request objects passed into pricing, allocation and finalize.

"""
Cart lines are a two-variant union discriminated by ``kind``:

- ServiceLine: price = base_price + adjustment
- ProductLine: price = base_price * quantity

Both are frozen dataclasses. Editing a cart means building a new request;
nothing here touches the database.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import ClassVar, Optional, Union


CLIENT_TYPE_NEW = "NEW"
CLIENT_TYPE_REGULAR = "REGULAR"
CLIENT_TYPE_TRANSFER = "TRANSFER"
CLIENT_TYPES = (CLIENT_TYPE_NEW, CLIENT_TYPE_REGULAR, CLIENT_TYPE_TRANSFER)

DISCOUNT_FIXED = "fixed"
DISCOUNT_PERCENTAGE = "percentage"

PAYMENT_CASH = "cash"
PAYMENT_CARD = "card"
PAYMENT_VOUCHER = "voucher"
PAYMENT_GIFT_CARD = "gift_card"
PAYMENT_METHODS = (PAYMENT_CASH, PAYMENT_CARD, PAYMENT_VOUCHER, PAYMENT_GIFT_CARD)


@dataclass(frozen=True)
class Allocation:
    """One batch reservation produced by the FIFO allocator."""
    batch_id: int
    batch_number: str
    quantity: int
    expiration_date: Optional[date] = None
    unit_cost: Decimal = Decimal("0")

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "batch_number": self.batch_number,
            "quantity": self.quantity,
            "expiration_date": self.expiration_date.isoformat() if self.expiration_date else None,
            "unit_cost": str(self.unit_cost),
        }


@dataclass(frozen=True)
class ProductUsage:
    """Salon-use product consumed when a service is performed."""
    product_id: str
    quantity: int


@dataclass(frozen=True)
class ServiceLine:
    kind: ClassVar[str] = "service"

    service_id: str
    name: str
    base_price: Decimal
    stylist_id: Optional[str] = None
    client_type: str = CLIENT_TYPE_REGULAR
    adjustment: Decimal = Decimal("0")
    adjustment_reason: Optional[str] = None
    product_usage: tuple[ProductUsage, ...] = ()

    @property
    def item_id(self) -> str:
        return self.service_id

    @property
    def quantity(self) -> int:
        return 1

    @property
    def price(self) -> Decimal:
        return self.base_price + self.adjustment


@dataclass(frozen=True)
class ProductLine:
    kind: ClassVar[str] = "product"

    product_id: str
    name: str
    base_price: Decimal
    quantity: int = 1
    unit_cost: Decimal = Decimal("0")
    commission_percentage: Decimal = Decimal("0")
    commissioner_id: Optional[str] = None
    batch_allocations: tuple[Allocation, ...] = ()

    @property
    def item_id(self) -> str:
        return self.product_id

    @property
    def price(self) -> Decimal:
        return self.base_price * self.quantity


LineItem = Union[ServiceLine, ProductLine]


@dataclass(frozen=True)
class BillRequest:
    """Everything finalize needs, captured at submit time."""
    branch_id: str
    items: tuple[LineItem, ...]
    client_id: Optional[str] = None
    client_name: str = ""
    discount_type: str = DISCOUNT_FIXED
    discount_value: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    service_charge_rate: Decimal = Decimal("0")
    loyalty_points_used: int = 0
    promotion_code: Optional[str] = None
    payment_method: str = PAYMENT_CASH
    amount_received: Optional[Decimal] = None
    payment_reference: Optional[str] = None
    receipt_number: Optional[str] = None
    appointment_id: Optional[str] = None
    created_by: Optional[str] = None
    notes: str = ""

    @property
    def services(self) -> list[ServiceLine]:
        return [item for item in self.items if isinstance(item, ServiceLine)]

    @property
    def products(self) -> list[ProductLine]:
        return [item for item in self.items if isinstance(item, ProductLine)]

    @property
    def sales_type(self) -> str:
        has_services = bool(self.services)
        has_products = bool(self.products)
        if has_services and has_products:
            return "mixed"
        if has_products:
            return "product"
        return "service"
