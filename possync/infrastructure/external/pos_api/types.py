"""
Tipos del payload de la API POS.

El payload se decodifica una sola vez en la frontera del cliente. Los montos
se mantienen en unidades menores (enteros) y los tiempos en epoch ms; la
conversion a Decimal/datetime la hace el motor de sync.

Las colecciones anidadas llegan como {"elements": [...]} y pueden faltar.
"""
from __future__ import annotations

from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class _PosModel(BaseModel):
    class Config:
        populate_by_name = True
        extra = "ignore"


class Elements(_PosModel, Generic[T]):
    elements: List[T] = Field(default_factory=list)


class PosRef(_PosModel):
    """Referencia minima a otra entidad ({"id": ...})."""

    id: Optional[str] = None


class PosCustomer(_PosModel):
    id: Optional[str] = None
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")

    @property
    def full_name(self) -> Optional[str]:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or None


class PosTender(_PosModel):
    label: Optional[str] = None
    label_key: Optional[str] = Field(default=None, alias="labelKey")


class PosCardTransaction(_PosModel):
    type: Optional[str] = None
    last4: Optional[str] = None
    auth_code: Optional[str] = Field(default=None, alias="authCode")


class PosLineItem(_PosModel):
    id: str
    name: Optional[str] = None
    price: int = 0
    unit_qty: Optional[int] = Field(default=None, alias="unitQty")
    item: Optional[PosRef] = None
    item_code: Optional[str] = Field(default=None, alias="itemCode")
    note: Optional[str] = None

    @property
    def quantity(self) -> int:
        return self.unit_qty or 1


class PosPayment(_PosModel):
    id: str
    external_payment_id: Optional[str] = Field(default=None, alias="externalPaymentId")
    amount: int = 0
    tip_amount: Optional[int] = Field(default=None, alias="tipAmount")
    tax_amount: Optional[int] = Field(default=None, alias="taxAmount")
    cashback_amount: Optional[int] = Field(default=None, alias="cashbackAmount")
    tender: Optional[PosTender] = None
    result: Optional[str] = None
    created_time: Optional[int] = Field(default=None, alias="createdTime")
    card_transaction: Optional[PosCardTransaction] = Field(default=None, alias="cardTransaction")

    @property
    def natural_id(self) -> str:
        return self.external_payment_id or self.id

    @property
    def method(self) -> str:
        if self.tender is None:
            return "unknown"
        return self.tender.label_key or self.tender.label or "unknown"


class PosDiscount(_PosModel):
    id: str
    name: Optional[str] = None
    amount: Optional[int] = None
    percentage: Optional[int] = None
    disc_type: Optional[str] = Field(default=None, alias="discType")

    @property
    def kind(self) -> str:
        if self.disc_type:
            return self.disc_type
        if self.percentage is not None:
            return "percentage"
        if self.amount is not None:
            return "amount"
        return "unknown"


class PosRefund(_PosModel):
    id: str
    amount: int = 0
    created_time: Optional[int] = Field(default=None, alias="createdTime")
    payment: Optional[PosRef] = None


class PosOrder(_PosModel):
    id: str
    order_number: Optional[str] = Field(default=None, alias="orderNumber")
    created_time: int = Field(alias="createdTime")
    modified_time: int = Field(alias="modifiedTime")
    state: Optional[str] = None
    payment_state: Optional[str] = Field(default=None, alias="paymentState")
    total: int = 0
    tax_amount: Optional[int] = Field(default=None, alias="taxAmount")
    note: Optional[str] = None
    customers: Optional[Elements[PosCustomer]] = None
    employee: Optional[PosRef] = None
    line_items: Optional[Elements[PosLineItem]] = Field(default=None, alias="lineItems")
    payments: Optional[Elements[PosPayment]] = None
    discounts: Optional[Elements[PosDiscount]] = None
    refunds: Optional[Elements[PosRefund]] = None

    @property
    def customer(self) -> Optional[PosCustomer]:
        if self.customers and self.customers.elements:
            return self.customers.elements[0]
        return None

    def line_item_list(self) -> List[PosLineItem]:
        return self.line_items.elements if self.line_items else []

    def payment_list(self) -> List[PosPayment]:
        return self.payments.elements if self.payments else []

    def discount_list(self) -> List[PosDiscount]:
        return self.discounts.elements if self.discounts else []

    def refund_list(self) -> List[PosRefund]:
        return self.refunds.elements if self.refunds else []


class PosItem(_PosModel):
    id: str
    name: Optional[str] = None
    sku: Optional[str] = None
    code: Optional[str] = None
    price: Optional[int] = None
    cost: Optional[int] = None


class PosItemStock(_PosModel):
    item: Optional[PosItem] = None
    quantity: Optional[float] = None
    stock_count: Optional[int] = Field(default=None, alias="stockCount")

    @property
    def level(self) -> float:
        if self.quantity is not None:
            return self.quantity
        return float(self.stock_count or 0)
