from __future__ import annotations

import os
from pathlib import Path

# ---------------------------------------------------------------------------
# Project paths
# ---------------------------------------------------------------------------

# Root of the project (repo root)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Data directories
DATA_DIR = PROJECT_ROOT / "data"
EXPORT_DIR = DATA_DIR / "exports"     # spreadsheets written by the export helpers

# ---------------------------------------------------------------------------
# App identity
# ---------------------------------------------------------------------------

APP_NAME = "AFM Business Registry"
APP_VERSION = "0.1.0"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"

# ---------------------------------------------------------------------------
# Record store configuration
#
# When REGISTRY_API_URL is set the registry REST API is the record source:
#   GET {REGISTRY_API_URL}/farmers?page=N&limit=M
# returning {"success": true, "data": [...], "pages": P}.
#
# Otherwise a local JSON seed file is used (a list of records in the API's
# camelCase shape), and if that is missing too the store starts empty.
# ---------------------------------------------------------------------------

REGISTRY_API_URL = os.getenv("REGISTRY_API_URL", "").strip().rstrip("/")
REGISTRY_API_TOKEN = os.getenv("REGISTRY_API_TOKEN", "").strip()
REGISTRY_API_TIMEOUT = int(os.getenv("REGISTRY_API_TIMEOUT", "60").strip() or 60)
REGISTRY_API_PAGE_SIZE = 100  # the API rejects limit > 100

REGISTRY_SEED_FILE = Path(
    os.getenv("REGISTRY_SEED_FILE", str(DATA_DIR / "businesses.json")).strip()
)

# ---------------------------------------------------------------------------
# Query / paging defaults
# ---------------------------------------------------------------------------

DEFAULT_PAGE_SIZE = 10
PAGE_SIZE_OPTIONS = [10, 25, 50, 100]
MAX_SORT_KEYS = 8

# Distributions truncated after aggregation (districts, value chains)
TOP_N = 10
VALUE_CHAIN_LABEL_MAX = 30
RECENT_RECORDS = 5

# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------

OWNERSHIP_VALUES = ("Youth-owned", "Non youth-owned")
STATUS_VALUES = ("Active", "Pending", "Inactive")
GENDER_VALUES = ("Male", "Female", "Other")

NID_MASK = "*************"

# Rwanda: 5 provinces, 30 districts. The import template uses the long
# province names; the record form uses the short ones, so both are listed.
_KIGALI = ("Gasabo", "Kicukiro", "Nyarugenge")
_NORTHERN = ("Burera", "Gakenke", "Gicumbi", "Musanze", "Rulindo")
_SOUTHERN = ("Gisagara", "Huye", "Kamonyi", "Muhanga", "Nyamagabe", "Nyanza", "Nyaruguru", "Ruhango")
_EASTERN = ("Bugesera", "Gatsibo", "Kayonza", "Kirehe", "Ngoma", "Nyagatare", "Rwamagana")
_WESTERN = ("Karongi", "Ngororero", "Nyabihu", "Nyamasheke", "Rubavu", "Rusizi", "Rutsiro")

PROVINCE_DISTRICTS = {
    "Kigali": _KIGALI,
    "Northern": _NORTHERN,
    "North": _NORTHERN,
    "Southern": _SOUTHERN,
    "South": _SOUTHERN,
    "Eastern": _EASTERN,
    "East": _EASTERN,
    "Western": _WESTERN,
    "West": _WESTERN,
}
