"""
Data models for extracted listings.
"""

from dataclasses import dataclass, asdict, fields
from typing import Dict, Any, List


MISSING = "N/A"


@dataclass
class ExtractedRecord:
    """Structured fields extracted from one listing page."""
    title: str = MISSING
    attribute: str = MISSING     # category-specific attribute (e.g. body type)
    price: str = MISSING
    location: str = MISSING
    contact_name: str = MISSING
    phone: str = MISSING
    url: str = ""

    @classmethod
    def field_names(cls) -> List[str]:
        """Column order used by the record sink."""
        return [f.name for f in fields(cls)]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtractedRecord":
        """Build a record from a mapping, ignoring unknown keys."""
        known = set(cls.field_names())
        return cls(**{key: str(value) for key, value in data.items() if key in known})

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    def to_row(self) -> List[str]:
        return [getattr(self, name) for name in self.field_names()]

    def missing_fields(self, mandatory: List[str]) -> List[str]:
        """Mandatory fields that carry no value."""
        return [name for name in mandatory if getattr(self, name, MISSING) in (MISSING, "", None)]
