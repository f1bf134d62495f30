from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

# Date formats seen in commencement dates besides ISO 8601
_DATE_FORMATS = ("%d/%m/%Y", "%Y/%m/%d", "%d-%m-%Y", "%d %b %Y", "%d %B %Y", "%b %d, %Y")

# Stored in `tin` when a business has no tax id; not searchable content
NO_TIN = "None"


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------

def clean_text(value: Any) -> str:
    """Normalize a raw cell/JSON value to a trimmed string ('' for missing)."""
    if value is None:
        return ""
    if isinstance(value, float) and value != value:  # NaN from pandas
        return ""
    s = str(value).replace("\u00A0", " ").strip()
    if s.lower() in {"nan", "nat", "null"}:
        return ""
    return s


def parse_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return int(value)
    if value is None:
        return default
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return default


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return clean_text(value).lower() in {"true", "yes", "y", "1"}


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a timestamp or calendar date into a naive UTC datetime.

    Accepts datetime objects, ISO 8601 strings (with or without a trailing 'Z')
    and a handful of day-first / month-name formats. Returns None when the
    value is missing or unparsable.
    """
    if isinstance(value, datetime):
        dt = value
    else:
        text = clean_text(value)
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            dt = None
            for fmt in _DATE_FORMATS:
                try:
                    dt = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
            if dt is None:
                return None

    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProductionItem:
    id: str
    name: str
    quantity: float = 0.0
    unit: str = "Kg"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProductionItem:
        try:
            qty = float(data.get("quantity") or 0)
        except (TypeError, ValueError):
            qty = 0.0
        return cls(
            id=clean_text(data.get("id")),
            name=clean_text(data.get("name")),
            quantity=max(qty, 0.0),
            unit=clean_text(data.get("unit")) or "Kg",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "quantity": self.quantity, "unit": self.unit}


@dataclass(frozen=True)
class BusinessRecord:
    """
    One registered business ("farmer") as held by the record store.

    Instances are immutable snapshots: the query pipeline, the aggregator and
    the export helpers only ever read them. Use dataclasses.replace() to derive
    a modified copy (e.g. a masked export row).
    """
    id: int
    business_name: str = ""
    owner_name: str = ""
    phone: str = ""
    tin: str = NO_TIN
    status: str = "Active"

    nid: str = ""
    ownership: str = ""
    gender: str = ""
    owner_age: int = 0
    education_level: str = "None"
    disability_status: str = "None"
    nationality: str = "Rwandan"

    province: str = ""
    district: str = ""
    sector: str = ""
    cell: str = ""
    village: str = ""

    business_type: str = ""
    participant_type: str = ""
    company_description: str = ""
    value_chain: str = ""
    business_size: str = "Micro"
    revenue: str = ""
    annual_income: str = ""
    employees: int = 0
    female_employees: int = 0
    youth_employees: int = 0
    permanent_employees: bool = False
    support_received: str = ""

    production: Tuple[ProductionItem, ...] = ()

    commencement_date: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BusinessRecord:
        """
        Build a record from the registry's JSON shape (camelCase) or from
        snake_case keys. Unknown keys are ignored.
        """
        values: Dict[str, Any] = {}
        for f in fields(cls):
            wire = WIRE_NAMES.get(f.name, f.name)
            if wire in data:
                values[f.name] = data[wire]
            elif f.name in data:
                values[f.name] = data[f.name]

        # crops is the wire name for production items
        raw_items = values.pop("production", None)
        items: List[ProductionItem] = []
        for raw in raw_items or []:
            if isinstance(raw, ProductionItem):
                items.append(raw)
            elif isinstance(raw, Mapping):
                items.append(ProductionItem.from_dict(raw))

        record_id = parse_int(values.pop("id", None), default=0)
        if record_id <= 0:
            raise ValueError(f"Record is missing a positive integer id: {dict(data)!r:.200}")

        kwargs: Dict[str, Any] = {}
        for name, raw in values.items():
            if name in _INT_FIELDS:
                kwargs[name] = parse_int(raw)
            elif name == "permanent_employees":
                kwargs[name] = parse_bool(raw)
            elif name in ("created_at", "updated_at"):
                kwargs[name] = parse_datetime(raw)
            else:
                kwargs[name] = clean_text(raw)

        return cls(id=record_id, production=tuple(items), **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the registry's camelCase JSON shape."""
        out: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == "production":
                value = [item.to_dict() for item in value]
            elif isinstance(value, datetime):
                value = value.isoformat()
            out[WIRE_NAMES.get(f.name, f.name)] = value
        return out


WIRE_NAMES: Dict[str, str] = {
    "business_name": "businessName",
    "owner_name": "ownerName",
    "owner_age": "ownerAge",
    "education_level": "educationLevel",
    "disability_status": "disabilityStatus",
    "business_type": "businessType",
    "participant_type": "participantType",
    "company_description": "companyDescription",
    "value_chain": "valueChain",
    "business_size": "businessSize",
    "annual_income": "annualIncome",
    "female_employees": "femaleEmployees",
    "youth_employees": "youthEmployees",
    "permanent_employees": "permanentEmployees",
    "support_received": "supportReceived",
    "production": "crops",
    "commencement_date": "commencementDate",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
}

_INT_FIELDS = {"owner_age", "employees", "female_employees", "youth_employees"}


@dataclass(frozen=True)
class GraphBucket:
    """A named count or sum; a list of buckets is one chart series."""
    name: str
    value: int
