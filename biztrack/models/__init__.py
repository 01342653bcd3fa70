from .ledger import (
    COLLECTION_SPECS,
    COLLECTIONS,
    DOCUMENT_KEYS,
    CollectionSpec,
    Ledger,
    decode_records,
    get_collection_spec,
)
from .records import Customer, Expense, Product, Record, Return, Sale, Supplier
from .settings import DEFAULT_BIZ_NAME, BusinessSettings

__all__ = [
    "BusinessSettings",
    "DEFAULT_BIZ_NAME",
    "Record",
    "Sale",
    "Product",
    "Supplier",
    "Customer",
    "Expense",
    "Return",
    "Ledger",
    "CollectionSpec",
    "COLLECTIONS",
    "COLLECTION_SPECS",
    "DOCUMENT_KEYS",
    "decode_records",
    "get_collection_spec",
]
