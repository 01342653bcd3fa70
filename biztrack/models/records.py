"""
Typed business records.

Each collection of the ledger holds one record type. Records are stored and
exported as JSON objects with camelCase keys; the dataclass fields below are
the schema that drives both directions of that conversion. Unknown keys are
preserved in ``extra`` so hand-edited or newer documents are not truncated.
"""

from dataclasses import dataclass, field, fields
from typing import Any, ClassVar, Mapping, Optional

from biztrack.exceptions import RecordDecodeError

TEXT = "text"
NUMBER = "number"
INTEGER = "integer"
KEY = "key"


def key_field(json_name: Optional[str] = None):
    """Record key; a string or a number that is coerced to one."""
    return field(default=None, metadata={"json": json_name, "kind": KEY})


def text(json_name: Optional[str] = None):
    """Optional string field."""
    return field(default=None, metadata={"json": json_name, "kind": TEXT})


def number(json_name: Optional[str] = None):
    """Optional numeric field (int or float)."""
    return field(default=None, metadata={"json": json_name, "kind": NUMBER})


def integer(json_name: Optional[str] = None):
    """Optional whole-number field."""
    return field(default=None, metadata={"json": json_name, "kind": INTEGER})


def _decode_value(kind: str, name: str, value: Any) -> Any:
    """Check a raw JSON value against a field kind."""
    if value is None:
        return None

    if kind == TEXT:
        if isinstance(value, str):
            return value
    elif kind == KEY:
        if isinstance(value, (str, int, float)) and not isinstance(value, bool):
            return value
    elif kind == NUMBER:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
    elif kind == INTEGER:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)

    raise RecordDecodeError(
        f"Field '{name}' expects {kind}, got {type(value).__name__}",
        details={"field": name, "value": value},
    )


@dataclass
class Record:
    """
    Base class for ledger records.

    Subclasses declare their fields with ``key_field``, ``text``, ``number``
    or ``integer`` and set ``KEY_FIELD`` to the attribute that identifies a
    record in its collection.
    """

    KEY_FIELD: ClassVar[str] = "id"

    extra: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def _schema(cls) -> list[tuple[str, str, str]]:
        """(attribute, json key, kind) for every declared field."""
        return [
            (f.name, f.metadata["json"] or f.name, f.metadata["kind"])
            for f in fields(cls)
            if "kind" in f.metadata
        ]

    @classmethod
    def json_fields(cls) -> list[str]:
        """JSON keys of the declared fields, in declaration order."""
        return [json_name for _, json_name, _ in cls._schema()]

    @property
    def key(self) -> str:
        """
        The record's key coerced to a string.

        Returns an empty string when the key is missing, which marks the
        record as not persistable.
        """
        value = getattr(self, self.KEY_FIELD)
        if value is None:
            return ""
        return str(value)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the stored/exported dictionary representation."""
        data = {}
        for attr, json_name, _ in self._schema():
            value = getattr(self, attr)
            if value is not None:
                data[json_name] = value
        for json_name, value in self.extra.items():
            data.setdefault(json_name, value)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], strict: bool = True):
        """
        Create a record from a stored or imported dictionary.

        With ``strict=False`` a field whose value has the wrong type is left
        unset and its raw value is kept in ``extra``, so the record still
        round-trips unchanged. Records loaded back from storage use this.

        Args:
            data: JSON object for one record
            strict: Raise on a field with the wrong type

        Returns:
            A record instance of this class

        Raises:
            RecordDecodeError: If data is not a mapping, or (strict only) a
                field has the wrong type
        """
        if not isinstance(data, Mapping):
            raise RecordDecodeError(
                f"{cls.__name__} must be an object, got {type(data).__name__}"
            )

        values = {}
        known = set()
        for attr, json_name, kind in cls._schema():
            known.add(json_name)
            try:
                values[attr] = _decode_value(kind, json_name, data.get(json_name))
            except RecordDecodeError:
                if strict:
                    raise
                known.discard(json_name)

        extra = {k: v for k, v in data.items() if k not in known}
        return cls(extra=extra, **values)


@dataclass
class Sale(Record):
    """A sale of one product line, with its payment state."""

    id: Optional[str] = key_field()
    date: Optional[str] = text()
    customer: Optional[str] = text()
    phone: Optional[str] = text()
    product: Optional[str] = text()
    qty: Optional[float] = number()
    unit_price: Optional[float] = number("unitPrice")
    category: Optional[str] = text()
    discount: Optional[float] = number()  # percent
    subtotal: Optional[float] = number()
    tax: Optional[float] = number()
    total: Optional[float] = number()
    paid: Optional[float] = number()
    balance: Optional[float] = number()
    status: Optional[str] = text()  # PAID, PARTIAL or UNPAID
    due_date: Optional[str] = text("dueDate")
    method: Optional[str] = text()
    gross_profit: Optional[float] = number("grossProfit")
    cost_price: Optional[float] = number("costPrice")
    notes: Optional[str] = text()


@dataclass
class Product(Record):
    """An inventory item."""

    id: Optional[str] = key_field()
    name: Optional[str] = text()
    category: Optional[str] = text()
    unit: Optional[str] = text()
    cost_price: Optional[float] = number("costPrice")
    sell_price: Optional[float] = number("sellPrice")
    stock: Optional[float] = number()
    reorder: Optional[float] = number()
    supplier: Optional[str] = text()
    notes: Optional[str] = text()
    created: Optional[str] = text()
    last_updated: Optional[str] = text("lastUpdated")


@dataclass
class Supplier(Record):
    """A supplier and what the business owes them."""

    id: Optional[str] = key_field()
    name: Optional[str] = text()
    contact: Optional[str] = text()
    phone: Optional[str] = text()
    products: Optional[str] = text()
    balance: Optional[float] = number()
    owed: Optional[float] = number()
    paid: Optional[float] = number()
    due: Optional[str] = text()
    notes: Optional[str] = text()
    created: Optional[str] = text()


@dataclass
class Customer(Record):
    """A customer account, keyed by its exact name."""

    KEY_FIELD: ClassVar[str] = "name"

    name: Optional[str] = key_field()
    phone: Optional[str] = text()
    email: Optional[str] = text()
    billed: Optional[float] = number()
    paid: Optional[float] = number()
    balance: Optional[float] = number()
    last_purchase: Optional[str] = text("lastPurchase")
    transactions: Optional[int] = integer()


@dataclass
class Expense(Record):
    id: Optional[str] = key_field()
    date: Optional[str] = text()
    category: Optional[str] = text()
    description: Optional[str] = text()
    amount: Optional[float] = number()
    method: Optional[str] = text()
    supplier: Optional[str] = text()
    receipt: Optional[str] = text()
    notes: Optional[str] = text()


@dataclass
class Return(Record):
    """A product return against an earlier sale."""

    id: Optional[str] = key_field()
    date: Optional[str] = text()
    sale_id: Optional[str] = text("saleId")
    product: Optional[str] = text()
    qty: Optional[float] = number()
    refund: Optional[float] = number()
    type: Optional[str] = text()
    restock: Optional[str] = text()  # YES puts the quantity back in stock
    reason: Optional[str] = text()
