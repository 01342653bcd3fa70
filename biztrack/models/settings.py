"""
Business settings model.

The settings record is always present on the ledger. Every field has a
built-in default, and stored or imported values are layered on top of them.
"""

from dataclasses import dataclass, field, fields
from typing import Any, Mapping, Optional

DEFAULT_BIZ_NAME = "My Business"


@dataclass
class BusinessSettings:
    """
    Business configuration shared by invoices, reports and stock alerts.

    Attributes map to camelCase keys in stored and exported documents
    (see ``json_name`` in each field's metadata). Keys the application
    does not know about are kept in ``extra`` so they survive a round trip.
    """

    biz_name: str = field(default=DEFAULT_BIZ_NAME, metadata={"json": "bizName"})
    owner: str = field(default="", metadata={"json": "owner"})
    business_type: str = field(default="General Shop", metadata={"json": "type"})
    currency: str = field(default="UGX", metadata={"json": "currency"})
    pay_terms: int = field(default=30, metadata={"json": "payTerms"})  # days
    tax_rate: float = field(default=0, metadata={"json": "taxRate"})  # percent
    low_stock: int = field(default=5, metadata={"json": "lowStock"})
    invoice_footer: str = field(
        default="Thank you for your business!", metadata={"json": "invoiceFooter"}
    )
    extra: dict[str, Any] = field(default_factory=dict, metadata={"json": None})

    @classmethod
    def json_names(cls) -> dict[str, str]:
        """Map of JSON key to attribute name for the known settings fields."""
        return {f.metadata["json"]: f.name for f in fields(cls) if f.metadata["json"]}

    @classmethod
    def layered(cls, *sources: Optional[Mapping[str, Any]]) -> "BusinessSettings":
        """
        Build settings from defaults with each source applied in order.

        Later sources win. ``None`` sources are ignored, so callers can pass
        an optional imported mapping directly.

        Args:
            sources: Mappings keyed by JSON field name (e.g. ``bizName``)

        Returns:
            A new BusinessSettings instance
        """
        settings = cls()
        for source in sources:
            if source:
                settings.update(source)
        return settings

    def update(self, values: Mapping[str, Any]):
        """Apply values keyed by JSON field name onto these settings."""
        names = self.json_names()
        for key, value in values.items():
            if key in names:
                setattr(self, names[key], value)
            else:
                self.extra[key] = value

    def to_dict(self) -> dict[str, Any]:
        """Convert to the stored/exported dictionary representation."""
        data = {
            f.metadata["json"]: getattr(self, f.name)
            for f in fields(self)
            if f.metadata["json"]
        }
        data.update(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BusinessSettings":
        """Create settings from a dictionary, filling gaps with defaults."""
        return cls.layered(data)
