from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


WriteAction = Literal["create", "update", "delete"]
WriteStatus = Literal["success", "error"]


class ConductorModel(BaseModel):
    """Base for records read from the gateway; unknown fields are kept and
    numeric identifiers such as ``refNumber`` are read as text."""

    model_config = ConfigDict(populate_by_name=True, extra="allow", coerce_numbers_to_str=True)


class EntityRef(ConductorModel):
    id: Optional[str] = None
    full_name: Optional[str] = Field(default=None, alias="fullName")


class IntegrationConnection(ConductorModel):
    id: Optional[str] = None
    integration_slug: str = Field(alias="integrationSlug")
    last_request_at: Optional[datetime] = Field(default=None, alias="lastRequestAt")


class EndUser(ConductorModel):
    id: str
    company_name: Optional[str] = Field(default=None, alias="companyName")
    email: Optional[str] = None
    source_id: Optional[str] = Field(default=None, alias="sourceId")
    integration_connections: list[IntegrationConnection] = Field(
        default_factory=list, alias="integrationConnections"
    )

    @field_validator("integration_connections", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    def connection_for(self, integration_slug: str) -> Optional[IntegrationConnection]:
        for connection in self.integration_connections:
            if connection.integration_slug == integration_slug:
                return connection
        return None


class Vendor(ConductorModel):
    id: str
    name: Optional[str] = None
    full_name: Optional[str] = Field(default=None, alias="fullName")
    company_name: Optional[str] = Field(default=None, alias="companyName")
    is_active: Optional[bool] = Field(default=None, alias="isActive")
    balance: Optional[Decimal] = None


class Customer(ConductorModel):
    id: str
    name: Optional[str] = None
    full_name: Optional[str] = Field(default=None, alias="fullName")
    company_name: Optional[str] = Field(default=None, alias="companyName")
    is_active: Optional[bool] = Field(default=None, alias="isActive")
    balance: Optional[Decimal] = None


class ExpenseLine(ConductorModel):
    kind: Literal["expense"] = Field(default="expense", exclude=True)
    id: Optional[str] = None
    account: Optional[EntityRef] = None
    amount: Optional[Decimal] = None
    memo: Optional[str] = None


class ItemLine(ConductorModel):
    kind: Literal["item"] = Field(default="item", exclude=True)
    id: Optional[str] = None
    item: Optional[EntityRef] = None
    description: Optional[str] = None
    quantity: Optional[Decimal] = None
    rate: Optional[Decimal] = None
    amount: Optional[Decimal] = None


BillLine = Annotated[Union[ExpenseLine, ItemLine], Field(discriminator="kind")]


class LinkedTransaction(ConductorModel):
    id: str
    transaction_type: Optional[str] = Field(default=None, alias="transactionType")
    ref_number: Optional[str] = Field(default=None, alias="refNumber")
    transaction_date: Optional[date] = Field(default=None, alias="transactionDate")
    amount: Optional[Decimal] = None


class Transaction(ConductorModel):
    id: Optional[str] = None
    object_type: Optional[str] = Field(default=None, alias="objectType")
    ref_number: Optional[str] = Field(default=None, alias="refNumber")
    transaction_date: Optional[date] = Field(default=None, alias="transactionDate")
    memo: Optional[str] = None
    linked_transactions: list[LinkedTransaction] = Field(
        default_factory=list, alias="linkedTransactions"
    )

    @field_validator("linked_transactions", mode="before")
    @classmethod
    def _links_none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class Bill(Transaction):
    vendor: Optional[EntityRef] = None
    terms: Optional[EntityRef] = None
    due_date: Optional[date] = Field(default=None, alias="dueDate")
    amount_due: Optional[Decimal] = Field(default=None, alias="amountDue")
    is_paid: Optional[bool] = Field(default=None, alias="isPaid")
    expense_lines: list[ExpenseLine] = Field(default_factory=list, alias="expenseLines")
    item_lines: list[ItemLine] = Field(default_factory=list, alias="itemLines")

    @field_validator("expense_lines", "item_lines", mode="before")
    @classmethod
    def _lines_none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def lines(self) -> list[BillLine]:
        return [*self.expense_lines, *self.item_lines]


class Invoice(Transaction):
    customer: Optional[EntityRef] = None
    total_amount: Optional[Decimal] = Field(default=None, alias="totalAmount")
    balance_remaining: Optional[Decimal] = Field(default=None, alias="balanceRemaining")
    lines: list[ItemLine] = Field(default_factory=list)

    @field_validator("lines", mode="before")
    @classmethod
    def _lines_none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class PurchaseOrder(Transaction):
    vendor: Optional[EntityRef] = None
    total_amount: Optional[Decimal] = Field(default=None, alias="totalAmount")
    is_fully_received: bool = Field(default=False, alias="isFullyReceived")
    is_manually_closed: bool = Field(default=False, alias="isManuallyClosed")
    lines: list[ItemLine] = Field(default_factory=list)

    @field_validator("is_fully_received", "is_manually_closed", mode="before")
    @classmethod
    def _flag_none_as_false(cls, value: Any) -> Any:
        return False if value is None else value

    @field_validator("lines", mode="before")
    @classmethod
    def _lines_none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def is_active(self) -> bool:
        return not self.is_fully_received and not self.is_manually_closed


class ListPage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    data: list[dict[str, Any]] = Field(default_factory=list)
    next_cursor: Optional[str] = Field(default=None, alias="nextCursor")

    @field_validator("data", mode="before")
    @classmethod
    def _data_none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class ExpenseLineInput(ConductorModel):
    account_id: Optional[str] = Field(default=None, alias="accountId")
    amount: Optional[Decimal] = None
    memo: Optional[str] = None


class ItemLineInput(ConductorModel):
    item_id: Optional[str] = Field(default=None, alias="itemId")
    description: Optional[str] = None
    quantity: Optional[Decimal] = None
    rate: Optional[Decimal] = None
    amount: Optional[Decimal] = None


class BillCreate(ConductorModel):
    vendor_id: Optional[str] = Field(default=None, alias="vendorId")
    vendor: Optional[EntityRef] = None
    transaction_date: Optional[date] = Field(default=None, alias="transactionDate")
    due_date: Optional[date] = Field(default=None, alias="dueDate")
    ref_number: Optional[str] = Field(default=None, alias="refNumber")
    terms_id: Optional[str] = Field(default=None, alias="termsId")
    memo: Optional[str] = None
    expense_lines: Optional[list[ExpenseLineInput]] = Field(default=None, alias="expenseLines")
    item_lines: Optional[list[ItemLineInput]] = Field(default=None, alias="itemLines")
    link_to_transaction_ids: Optional[list[str]] = Field(default=None, alias="linkToTransactionIds")

    @property
    def resolved_vendor_id(self) -> Optional[str]:
        if self.vendor_id:
            return self.vendor_id
        if self.vendor is not None and self.vendor.id:
            return self.vendor.id
        return None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class LinkedEntity(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str
    id: Optional[str] = None
    ref_number: Optional[str] = Field(default=None, alias="refNumber")


class LogEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    timestamp: datetime
    action: WriteAction
    entity: str
    endpoint: str
    request: Optional[Any] = None
    response: Any = None
    status: WriteStatus
    ref_number: Optional[str] = Field(default=None, alias="refNumber")
    linked_entities: list[LinkedEntity] = Field(default_factory=list, alias="linkedEntities")
