"""
Pytest configuration and shared record factories.
"""

from __future__ import annotations

import os
from datetime import datetime
from typing import Any, Callable, List

import pytest

# Keep tests on local stores regardless of the developer's environment
os.environ.pop("REGISTRY_API_URL", None)

from farmer_registry.core.data_loader import InMemoryRecordStore
from farmer_registry.core.models import BusinessRecord, ProductionItem


def _make_record(id: int = 1, **overrides: Any) -> BusinessRecord:
    """Build a valid record with sensible defaults; override any field."""
    base = dict(
        business_name=f"Business {id}",
        owner_name=f"Owner {id}",
        phone=f"07880000{id:02d}",
        tin=f"10{id:07d}",
        nid=f"11990800{id:08d}",
        ownership="Youth-owned",
        gender="Female",
        owner_age=30,
        education_level="Secondary",
        province="Kigali",
        district="Gasabo",
        sector="Remera",
        cell="Rukiri",
        village="Nyabisindu",
        business_type="Cooperative",
        value_chain="Horticulture",
        business_size="Micro",
        revenue="< 840k",
        annual_income="500,000 RWF",
        employees=4,
        female_employees=2,
        youth_employees=3,
        commencement_date="2021-03-15",
        created_at=datetime(2024, 1, 10, 9, 0, 0),
    )
    base.update(overrides)
    if "production" in base:
        base["production"] = tuple(
            p if isinstance(p, ProductionItem) else ProductionItem(id=f"c{i}", name=p)
            for i, p in enumerate(base["production"], start=1)
        )
    return BusinessRecord(id=id, **base)


@pytest.fixture
def make_record() -> Callable[..., BusinessRecord]:
    return _make_record


@pytest.fixture
def sample_records() -> List[BusinessRecord]:
    """A small, mixed registry used across query and aggregation tests."""
    return [
        _make_record(
            1, business_name="Alpha Agro", owner_name="Jean Bosco", ownership="Youth-owned",
            gender="Male", owner_age=24, province="Kigali", district="Gasabo",
            business_type="Cooperative", annual_income="1,200,000 RWF", employees=10,
            commencement_date="2020-05-01", production=["Maize", "Beans"],
            created_at=datetime(2024, 2, 1),
        ),
        _make_record(
            2, business_name="Beta Foods", owner_name="Aline Uwase", ownership="Non youth-owned",
            gender="Female", owner_age=41, province="Southern", district="Huye",
            business_type="Formal company", annual_income="Less than 840,000", employees=3,
            commencement_date="2019-01-20", production=["Coffee"],
            created_at=datetime(2024, 3, 5),
        ),
        _make_record(
            3, business_name="Gamma Dairy", owner_name="Eric Mugisha", ownership="Youth-owned",
            gender="Male", owner_age=33, province="Northern", district="Musanze",
            business_type="Individual", annual_income="", employees=0,
            commencement_date="2022-11-02", production=[],
            created_at=datetime(2024, 3, 20),
        ),
        _make_record(
            4, business_name="Delta agro supplies", owner_name="Grace Mukamana", ownership="Non youth-owned",
            gender="Female", owner_age=58, province="Kigali", district="Kicukiro",
            business_type="Informal", annual_income="3,000,000", employees=7,
            commencement_date="2020-05-01", production=["Tomatoes"],
            created_at=datetime(2023, 12, 30),
        ),
    ]


@pytest.fixture
def store(sample_records: List[BusinessRecord]) -> InMemoryRecordStore:
    return InMemoryRecordStore(sample_records)
