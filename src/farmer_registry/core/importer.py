"""
Bulk import of registry records from the spreadsheet template.

The flow for one upload is:

  read_import_workbook()  -> list of raw row dicts keyed by header text
  plan_import()           -> per-row mapping, validation and dedup against a
                             store snapshot; produces payloads + a report
  import_batch()          -> plan_import() then store.add_many(payloads)

Row problems never raise. Each row ends up in exactly one of: imported,
errors (validation failures), duplicates (dedup key already taken) or
skipped as blank.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import IO, Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import logging
import re
import zipfile

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.datavalidation import DataValidation

from farmer_registry.config import GENDER_VALUES, OWNERSHIP_VALUES, STATUS_VALUES
from farmer_registry.core.data_loader import ReadOnlyStoreError, RecordStore, is_writable
from farmer_registry.core.models import BusinessRecord, clean_text

logger = logging.getLogger(__name__)

DATA_SHEET = "Data Entry"
INSTRUCTIONS_SHEET = "Instructions"
TEMPLATE_MAX_ROW = 500
CROP_SLOTS = 3
MIN_AGE = 18
MIN_PHONE_DIGITS = 9


class ImportFileError(Exception):
    """Raised when an uploaded workbook cannot be read or holds no data rows."""


# ---------------------------------------------------------------------------
# Column layout
# ---------------------------------------------------------------------------

# (header, wire key, column width); order is the template's column order
IMPORT_COLUMNS: List[Tuple[str, str, int]] = [
    ("Business Name*", "businessName", 25),
    ("Owner Name*", "ownerName", 20),
    ("Phone*", "phone", 15),
    ("Province*", "province", 12),
    ("District*", "district", 15),
    ("Sector*", "sector", 12),
    ("Cell*", "cell", 12),
    ("Village*", "village", 15),
    ("Ownership*", "ownership", 18),
    ("Business Type*", "businessType", 18),
    ("Value Chain*", "valueChain", 15),
    ("Commencement Date*", "commencementDate", 18),
    ("Owner Age*", "ownerAge", 12),
    ("Education Level", "educationLevel", 15),
    ("Gender", "gender", 10),
    ("TIN", "tin", 15),
    ("NID", "nid", 20),
    ("Nationality", "nationality", 12),
    ("Business Size", "businessSize", 12),
    ("Employees", "employees", 12),
    ("Female Employees", "femaleEmployees", 16),
    ("Youth Employees", "youthEmployees", 16),
    ("Revenue", "revenue", 28),
    ("Annual Income", "annualIncome", 28),
    ("Disability Status", "disabilityStatus", 15),
    ("Participant Type", "participantType", 18),
    ("Company Description", "companyDescription", 40),
    ("Support Received", "supportReceived", 25),
    ("Status", "status", 10),
]
for _n in range(1, CROP_SLOTS + 1):
    IMPORT_COLUMNS += [
        (f"Crop {_n} Name", f"crop{_n}Name", 15),
        (f"Crop {_n} Quantity", f"crop{_n}Qty", 14),
        (f"Crop {_n} Unit", f"crop{_n}Unit", 12),
    ]

HEADER_FOR_KEY: Dict[str, str] = {key: header for header, key, _ in IMPORT_COLUMNS}
KEY_FOR_HEADER: Dict[str, str] = {header: key for header, key, _ in IMPORT_COLUMNS}

REQUIRED_FIELDS = [
    "businessName", "ownerName", "phone", "province", "district",
    "sector", "cell", "village", "ownership", "businessType",
    "valueChain", "commencementDate", "ownerAge",
]

COUNT_FIELDS = ["employees", "femaleEmployees", "youthEmployees"]

ENUM_FIELDS: Dict[str, Sequence[str]] = {
    "ownership": OWNERSHIP_VALUES,
    "gender": GENDER_VALUES,
    "status": STATUS_VALUES,
}

TEMPLATE_DROPDOWNS: Dict[str, Sequence[str]] = {
    "province": ["Kigali", "Northern", "Southern", "Eastern", "Western"],
    "ownership": OWNERSHIP_VALUES,
    "businessType": ["Crop Production", "Livestock", "Agro-processing", "Trading", "Services", "Mixed Farming"],
    "valueChain": ["Horticulture", "Cereals", "Dairy", "Poultry", "Fisheries", "Coffee", "Tea", "Other"],
    "educationLevel": ["None", "Primary", "Secondary", "TVET", "Bachelor", "Master", "PhD"],
    "gender": GENDER_VALUES,
    "nationality": ["Rwandan", "Burundian", "Congolese", "Ugandan", "Kenyan", "Tanzanian", "Other"],
    "businessSize": ["Micro", "Small", "Medium", "Large"],
    "revenue": ["< 500K RWF", "500K - 1M RWF", "1M - 5M RWF", "5M - 10M RWF", "> 10M RWF"],
    "annualIncome": ["< 200K RWF", "200K - 500K RWF", "500K - 1M RWF", "1M - 5M RWF", "> 5M RWF"],
    "disabilityStatus": ["None", "Physical", "Visual", "Hearing", "Mental", "Other"],
    "participantType": ["Direct Beneficiary", "Indirect Beneficiary", "Lead Farmer", "Cooperative Member", "Other"],
    "status": STATUS_VALUES,
}
_CROP_NAMES = [
    "Tomatoes", "Cabbage", "Carrots", "Onions", "Beans", "Maize", "Rice", "Potatoes",
    "Bananas", "Coffee", "Tea", "Cassava", "Sweet Potatoes", "Sorghum", "Other",
]
_CROP_UNITS = ["Kg", "Tons", "Bags", "Crates", "Bunches", "Liters", "Pieces"]
for _n in range(1, CROP_SLOTS + 1):
    TEMPLATE_DROPDOWNS[f"crop{_n}Name"] = _CROP_NAMES
    TEMPLATE_DROPDOWNS[f"crop{_n}Unit"] = _CROP_UNITS

SAMPLE_ROW: Dict[str, Any] = {
    "businessName": "Example Farm Ltd",
    "ownerName": "John Doe",
    "phone": "0781234567",
    "province": "Kigali",
    "district": "Gasabo",
    "sector": "Remera",
    "cell": "Rukiri",
    "village": "Nyabisindu",
    "ownership": "Youth-owned",
    "businessType": "Crop Production",
    "valueChain": "Horticulture",
    "commencementDate": "2020-01-15",
    "ownerAge": 30,
    "educationLevel": "Bachelor",
    "gender": "Male",
    "tin": "123456789",
    "nid": "1199012345678901",
    "nationality": "Rwandan",
    "businessSize": "Micro",
    "employees": 5,
    "femaleEmployees": 2,
    "youthEmployees": 3,
    "revenue": "1M - 5M RWF",
    "annualIncome": "500K - 1M RWF",
    "disabilityStatus": "None",
    "participantType": "Direct Beneficiary",
    "companyDescription": "A small-scale vegetable farming business",
    "supportReceived": "Training, Seeds",
    "status": "Active",
    "crop1Name": "Tomatoes",
    "crop1Qty": 500,
    "crop1Unit": "Kg",
    "crop2Name": "Cabbage",
    "crop2Qty": 300,
    "crop2Unit": "Kg",
}


def _header_lookup() -> Dict[str, str]:
    lookup: Dict[str, str] = {}
    for header, key, _ in IMPORT_COLUMNS:
        lookup[header.lower().strip()] = key
        lookup[header.replace("*", "").lower().strip()] = key
    return lookup


_HEADER_LOOKUP = _header_lookup()


def resolve_header(header: Any) -> Optional[str]:
    """
    Map a spreadsheet header to its wire key.

    Tries the exact header, then a case-insensitive match, then the same with
    the required-field '*' removed. Unknown headers map to None.
    """
    text = clean_text(header)
    if text in KEY_FOR_HEADER:
        return KEY_FOR_HEADER[text]
    lowered = text.lower()
    if lowered in _HEADER_LOOKUP:
        return _HEADER_LOOKUP[lowered]
    return _HEADER_LOOKUP.get(text.replace("*", "").lower().strip())


# ---------------------------------------------------------------------------
# Report types
# ---------------------------------------------------------------------------

@dataclass
class RowError:
    row: int
    errors: List[str]


@dataclass
class RowDuplicate:
    row: int
    reason: str


@dataclass
class ImportReport:
    total_rows: int = 0
    imported_count: int = 0
    blank_rows: int = 0
    errors: List[RowError] = field(default_factory=list)
    duplicates: List[RowDuplicate] = field(default_factory=list)
    imported: List[BusinessRecord] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def duplicate_count(self) -> int:
        return len(self.duplicates)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "importedCount": self.imported_count,
            "duplicateCount": self.duplicate_count,
            "errorCount": self.error_count,
            "totalRows": self.total_rows,
            "errors": [{"row": e.row, "errors": list(e.errors)} for e in self.errors],
            "duplicates": [{"row": d.row, "reason": d.reason} for d in self.duplicates],
        }


@dataclass
class ImportPlan:
    """Validated payloads (wire-shaped dicts) plus the report so far."""
    payloads: List[Dict[str, Any]]
    report: ImportReport


# ---------------------------------------------------------------------------
# Row mapping and validation
# ---------------------------------------------------------------------------

def _cell_text(value: Any) -> str:
    """Render a spreadsheet cell as text; integral floats lose their '.0'."""
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, float) and value == value and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.strftime("%Y-%m-%d")
    return clean_text(value)


def map_row(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """Map one raw row (header -> cell) to wire keys, dropping blank cells."""
    mapped: Dict[str, Any] = {}
    for header, value in raw.items():
        key = resolve_header(header)
        if key is None:
            continue
        text = _cell_text(value)
        if text:
            mapped[key] = text
    return mapped


def _number(text: str) -> Optional[float]:
    try:
        num = float(text)
    except ValueError:
        return None
    if num != num:
        return None
    return num


def phone_digits(phone: Any) -> str:
    return re.sub(r"\D", "", _cell_text(phone))


def normalize_phone(phone: Any) -> str:
    """Digits only, without the Rwandan country code or trunk prefix."""
    digits = phone_digits(phone)
    if digits.startswith("250") and len(digits) > 9:
        return digits[3:]
    if digits.startswith("0") and len(digits) == 10:
        return digits[1:]
    return digits


def validate_row(mapped: Dict[str, Any]) -> List[str]:
    """
    Validate a mapped row in place and return its error messages.

    Numeric fields that pass are converted (owner age and counts to int) and
    the phone is reduced to its digits.
    """
    errors: List[str] = []

    for key in REQUIRED_FIELDS:
        if not mapped.get(key):
            errors.append(f"Missing required field: {HEADER_FOR_KEY[key]}")

    for key, allowed in ENUM_FIELDS.items():
        value = mapped.get(key)
        if value and value not in allowed:
            choices = ", ".join(f'"{a}"' for a in allowed)
            errors.append(f'Invalid {key}: "{value}". Must be one of {choices}')

    if mapped.get("ownerAge"):
        age = _number(mapped["ownerAge"])
        if age is None or age < MIN_AGE:
            errors.append(f'Invalid owner age: "{mapped["ownerAge"]}". Must be {MIN_AGE} or older')
        else:
            mapped["ownerAge"] = int(age)

    if mapped.get("phone"):
        digits = phone_digits(mapped["phone"])
        if len(digits) < MIN_PHONE_DIGITS:
            errors.append(f'Invalid phone: "{mapped["phone"]}". Must be at least {MIN_PHONE_DIGITS} digits')
        mapped["phone"] = digits

    for key in COUNT_FIELDS:
        if key not in mapped:
            continue
        num = _number(mapped[key])
        if num is None or num < 0:
            errors.append(f'Invalid {key}: "{mapped[key]}". Must be a non-negative number')
        else:
            mapped[key] = int(num)

    return errors


def _pop_production(mapped: Dict[str, Any], row_number: int) -> List[Dict[str, Any]]:
    items: List[Dict[str, Any]] = []
    for n in range(1, CROP_SLOTS + 1):
        name = mapped.pop(f"crop{n}Name", "")
        qty_text = mapped.pop(f"crop{n}Qty", "")
        unit = mapped.pop(f"crop{n}Unit", "")
        if not name:
            continue
        qty = _number(qty_text) if qty_text else 0.0
        items.append({
            "id": f"crop-{row_number}-{n}",
            "name": name,
            "quantity": qty if qty is not None and qty >= 0 else 0.0,
            "unit": unit or "Kg",
        })
    return items


# ---------------------------------------------------------------------------
# Duplicate detection
# ---------------------------------------------------------------------------

def _pair_key(business_name: Any, owner_name: Any) -> Optional[Tuple[str, str]]:
    b = clean_text(business_name).casefold()
    o = clean_text(owner_name).casefold()
    if not (b and o):
        return None
    return b, o


class _DedupIndex:
    """Phone and (business name, owner name) keys already taken."""

    def __init__(self, existing: Iterable[BusinessRecord]) -> None:
        self.phones: Dict[str, Optional[int]] = {}
        self.pairs: Dict[Tuple[str, str], Optional[int]] = {}
        for r in existing:
            phone = normalize_phone(r.phone)
            if phone:
                self.phones.setdefault(phone, None)
            pair = _pair_key(r.business_name, r.owner_name)
            if pair:
                self.pairs.setdefault(pair, None)

    @staticmethod
    def _where(row: Optional[int]) -> str:
        return "already registered" if row is None else f"repeats row {row} of this file"

    def conflict(self, mapped: Mapping[str, Any]) -> Optional[str]:
        phone = normalize_phone(mapped.get("phone"))
        if phone and phone in self.phones:
            return f"Phone number {mapped.get('phone')} {self._where(self.phones[phone])}"
        pair = _pair_key(mapped.get("businessName"), mapped.get("ownerName"))
        if pair and pair in self.pairs:
            return f"Business '{mapped.get('businessName')}' owned by '{mapped.get('ownerName')}' {self._where(self.pairs[pair])}"
        return None

    def claim(self, mapped: Mapping[str, Any], row_number: int) -> None:
        phone = normalize_phone(mapped.get("phone"))
        if phone:
            self.phones[phone] = row_number
        pair = _pair_key(mapped.get("businessName"), mapped.get("ownerName"))
        if pair:
            self.pairs[pair] = row_number


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------

def _as_rows(rows: Union[pd.DataFrame, Iterable[Mapping[str, Any]]]) -> List[Mapping[str, Any]]:
    if isinstance(rows, pd.DataFrame):
        return rows.to_dict(orient="records")
    return list(rows)


def plan_import(
    existing: Iterable[BusinessRecord],
    rows: Union[pd.DataFrame, Iterable[Mapping[str, Any]]],
) -> ImportPlan:
    """
    Map, validate and dedup a batch against existing records. Pure.

    Row numbers are spreadsheet rows: the first data row (under the header)
    is row 2. Entirely blank rows are skipped without a report entry.
    """
    raw_rows = _as_rows(rows)
    report = ImportReport(total_rows=len(raw_rows))
    index = _DedupIndex(existing)
    payloads: List[Dict[str, Any]] = []

    for i, raw in enumerate(raw_rows):
        row_number = i + 2
        mapped: Dict[str, Any] = map_row(raw)
        if not mapped:
            report.blank_rows += 1
            continue

        problems = validate_row(mapped)
        if problems:
            report.errors.append(RowError(row=row_number, errors=problems))
            continue

        reason = index.conflict(mapped)
        if reason:
            report.duplicates.append(RowDuplicate(row=row_number, reason=reason))
            continue
        index.claim(mapped, row_number)

        crops = _pop_production(mapped, row_number)
        if crops:
            mapped["crops"] = crops
        mapped.setdefault("status", "Active")
        payloads.append(mapped)

    logger.info(
        "Import plan: %d rows, %d valid, %d errors, %d duplicates, %d blank",
        report.total_rows, len(payloads), report.error_count, report.duplicate_count, report.blank_rows,
    )
    return ImportPlan(payloads=payloads, report=report)


def import_batch(store: RecordStore, rows: Union[pd.DataFrame, Iterable[Mapping[str, Any]]]) -> ImportReport:
    """
    Validate and insert a batch into a writable store (one with add_many).

    Rows are checked against the store's current snapshot and against earlier
    rows of the same batch. Raises ReadOnlyStoreError for a store without
    add_many (e.g. the REST adapter).
    """
    if not is_writable(store):
        raise ReadOnlyStoreError(f"{type(store).__name__} does not accept new records")
    plan = plan_import(store.snapshot(), rows)
    report = plan.report
    if plan.payloads:
        created = store.add_many(plan.payloads)
        report.imported = list(created)
        report.imported_count = len(created)
    return report


# ---------------------------------------------------------------------------
# Workbook I/O
# ---------------------------------------------------------------------------

def _pick_data_sheet(sheet_names: Sequence[str]) -> str:
    if DATA_SHEET in sheet_names:
        return DATA_SHEET
    for name in sheet_names:
        lowered = name.lower()
        if any(word in lowered for word in ("data", "entry", "farmer", "business")):
            return name
    for name in sheet_names:
        if "instruction" not in name.lower():
            return name
    return sheet_names[0]


def read_import_workbook(source: Union[str, Path, IO[bytes]]) -> List[Dict[str, Any]]:
    """
    Read the data rows of an upload as header -> cell dicts.

    Uses the 'Data Entry' sheet when present, otherwise the first sheet that
    looks like data. Raises ImportFileError when the workbook is unreadable
    or has no data rows.
    """
    try:
        xls = pd.ExcelFile(source)
    except (OSError, ValueError, zipfile.BadZipFile) as exc:
        raise ImportFileError(f"Could not open workbook: {exc}") from exc

    if not xls.sheet_names:
        raise ImportFileError("Workbook has no sheets.")

    sheet = _pick_data_sheet(xls.sheet_names)
    logger.info("Reading import sheet %r (sheets: %s)", sheet, xls.sheet_names)
    df = xls.parse(sheet, dtype=object)

    if df.empty:
        raise ImportFileError(
            f'The workbook is empty or has no data rows. Fill in the "{DATA_SHEET}" sheet '
            f"(sheets found: {xls.sheet_names})."
        )

    unknown = [c for c in df.columns if resolve_header(c) is None]
    if unknown:
        logger.warning("Ignoring unrecognised import columns: %s", unknown)

    return df.to_dict(orient="records")


_INSTRUCTIONS = [
    "INSTRUCTIONS FOR BULK UPLOAD",
    "",
    "1. Fill in the data starting from row 2 (row 1 contains headers)",
    "2. Fields marked with * are required",
    "3. Do NOT modify the column headers",
    "4. Use the dropdown lists where a cell offers one",
    "5. Delete the sample row (row 2) before uploading",
    "",
    "DUPLICATES:",
    "A row is skipped as a duplicate when its phone number, or its business name",
    "together with the owner name, matches an existing record or an earlier row.",
    "",
    "VALIDATION:",
    f"Owner Age: {MIN_AGE} or older",
    f"Phone: at least {MIN_PHONE_DIGITS} digits",
    "Employees, Female Employees, Youth Employees: non-negative numbers",
    "Crop Quantity: numeric values",
]


def write_import_template(target: Union[str, Path, IO[bytes]]) -> Union[str, Path, IO[bytes]]:
    """Write the bulk-upload template workbook (data sheet + instructions)."""
    wb = Workbook()
    ws = wb.active
    ws.title = DATA_SHEET
    ws.freeze_panes = "A2"

    header_fill = PatternFill(fill_type="solid", fgColor="FF2E7D32")
    sample_fill = PatternFill(fill_type="solid", fgColor="FFF0F0F0")

    for col, (header, key, width) in enumerate(IMPORT_COLUMNS, start=1):
        cell = ws.cell(row=1, column=col, value=header)
        cell.font = Font(bold=True, color="FFFFFFFF")
        cell.fill = header_fill
        ws.column_dimensions[get_column_letter(col)].width = width

        sample = ws.cell(row=2, column=col, value=SAMPLE_ROW.get(key))
        sample.fill = sample_fill

        options = TEMPLATE_DROPDOWNS.get(key)
        if options:
            letter = get_column_letter(col)
            dv = DataValidation(type="list", formula1='"' + ",".join(options) + '"', allow_blank=True)
            ws.add_data_validation(dv)
            dv.add(f"{letter}2:{letter}{TEMPLATE_MAX_ROW}")

    notes = wb.create_sheet(INSTRUCTIONS_SHEET)
    notes.column_dimensions["A"].width = 80
    for i, line in enumerate(_INSTRUCTIONS, start=1):
        cell = notes.cell(row=i, column=1, value=line)
        if i == 1 or line.endswith(":"):
            cell.font = Font(bold=True)

    wb.save(target)
    logger.info("Wrote import template with %d columns", len(IMPORT_COLUMNS))
    return target
