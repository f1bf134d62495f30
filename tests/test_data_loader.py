"""
Record stores: in-memory writes and snapshots, JSON seed files and the
registry REST API adapter (HTTP faked through the session getter).
"""

from __future__ import annotations

import json

import pytest
import requests

from farmer_registry.core import data_loader
from farmer_registry.core.data_loader import (
    ApiRecordStore,
    DataLoaderError,
    InMemoryRecordStore,
    is_writable,
    load_store,
    records_to_frame,
)
from farmer_registry.core.errors import RecordNotFoundError


class FakeResponse:
    def __init__(self, payload=None, status_code=200, text=""):
        self._payload = payload
        self.status_code = status_code
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        result = self.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def _wire(i):
    return {"id": i, "businessName": f"Farm {i}", "ownerName": f"Owner {i}"}


class TestInMemoryRecordStore:
    def test_add_assigns_ids_and_timestamps(self, store):
        created = store.add({"businessName": "Epsilon"})
        assert created.id == 5
        assert created.created_at is not None
        assert created.created_at == created.updated_at

    def test_ids_are_never_reused(self, store):
        store.remove(4)
        assert store.add({"businessName": "Zeta"}).id == 5

    def test_supplied_ids_are_ignored(self):
        s = InMemoryRecordStore()
        assert s.add({"id": 99, "businessName": "x"}).id == 1

    def test_snapshot_is_isolated_from_later_writes(self, store):
        snap = store.snapshot()
        store.add({"businessName": "Later"})
        assert len(snap) == 4
        assert len(store.snapshot()) == 5

    def test_update_keeps_identity_and_creation_time(self, store):
        original = store.snapshot()[0]
        updated = store.update(original.id, {"businessName": "Renamed"})
        assert updated.id == original.id
        assert updated.business_name == "Renamed"
        assert updated.created_at == original.created_at
        assert original.business_name == "Alpha Agro"

    def test_update_unknown_id(self, store):
        with pytest.raises(RecordNotFoundError) as exc:
            store.update(404, {"businessName": "x"})
        assert exc.value.record_id == 404

    def test_remove_unknown_id(self, store):
        with pytest.raises(RecordNotFoundError):
            store.remove(404)
        assert len(store.snapshot()) == 4

    def test_duplicate_seed_ids_are_rejected(self, make_record):
        with pytest.raises(DataLoaderError):
            InMemoryRecordStore([make_record(1), make_record(2), make_record(1, business_name="Twin")])

    def test_stores_are_classified_by_writability(self, store):
        assert is_writable(store)
        assert not is_writable(ApiRecordStore(base_url="http://registry.test/api"))

    def test_from_json_file(self, tmp_path):
        path = tmp_path / "seed.json"
        path.write_text(json.dumps([_wire(1), _wire(2), {"businessName": "no id"}]), encoding="utf-8")
        s = InMemoryRecordStore.from_json_file(path)
        assert [r.id for r in s.snapshot()] == [1, 2]
        assert s.add({"businessName": "next"}).id == 3

    def test_from_json_file_accepts_api_envelope(self, tmp_path):
        path = tmp_path / "seed.json"
        path.write_text(json.dumps({"success": True, "data": [_wire(3)]}), encoding="utf-8")
        assert len(InMemoryRecordStore.from_json_file(path).snapshot()) == 1

    def test_from_json_file_unreadable(self, tmp_path):
        path = tmp_path / "seed.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(DataLoaderError):
            InMemoryRecordStore.from_json_file(path)


class TestApiRecordStore:
    def test_fetches_all_pages(self, monkeypatch):
        session = FakeSession([
            FakeResponse({"success": True, "data": [_wire(1), _wire(2)], "pages": 2}),
            FakeResponse({"success": True, "data": [_wire(3)], "pages": 2}),
        ])
        monkeypatch.setattr(data_loader, "_get_session", lambda: session)
        api = ApiRecordStore(base_url="https://registry.example/api/", token="t0k", page_size=2)

        records = api.snapshot()

        assert [r.id for r in records] == [1, 2, 3]
        assert session.calls[0]["url"] == "https://registry.example/api/farmers"
        assert session.calls[1]["params"] == {"page": 2, "limit": 2}
        assert session.calls[0]["headers"]["Authorization"] == "Bearer t0k"

    def test_success_false_is_an_error(self, monkeypatch):
        session = FakeSession([FakeResponse({"success": False, "message": "Not authorized"}, status_code=401)])
        monkeypatch.setattr(data_loader, "_get_session", lambda: session)
        with pytest.raises(DataLoaderError, match="Not authorized"):
            ApiRecordStore(base_url="https://registry.example/api").snapshot()

    def test_non_json_response(self, monkeypatch):
        session = FakeSession([FakeResponse(None, status_code=502, text="<html>Bad gateway</html>")])
        monkeypatch.setattr(data_loader, "_get_session", lambda: session)
        with pytest.raises(DataLoaderError, match="Non-JSON"):
            ApiRecordStore(base_url="https://registry.example/api").snapshot()

    def test_transport_error(self, monkeypatch):
        session = FakeSession([requests.ConnectionError("refused")])
        monkeypatch.setattr(data_loader, "_get_session", lambda: session)
        with pytest.raises(DataLoaderError, match="HTTP error"):
            ApiRecordStore(base_url="https://registry.example/api").snapshot()

    def test_requires_url(self):
        with pytest.raises(DataLoaderError):
            ApiRecordStore(base_url="")


class TestLoadStore:
    def test_api_store_when_url_configured(self, monkeypatch):
        monkeypatch.setattr(data_loader, "REGISTRY_API_URL", "https://registry.example/api")
        assert isinstance(load_store(), ApiRecordStore)

    def test_seed_file_when_present(self, monkeypatch, tmp_path):
        monkeypatch.setattr(data_loader, "REGISTRY_API_URL", "")
        path = tmp_path / "businesses.json"
        path.write_text(json.dumps([_wire(1)]), encoding="utf-8")
        s = load_store(path)
        assert isinstance(s, InMemoryRecordStore)
        assert len(s.snapshot()) == 1

    def test_empty_store_otherwise(self, monkeypatch, tmp_path):
        monkeypatch.setattr(data_loader, "REGISTRY_API_URL", "")
        s = load_store(tmp_path / "missing.json")
        assert s.snapshot() == ()


class TestRecordsToFrame:
    def test_columns_and_crops(self, make_record):
        df = records_to_frame([make_record(1, production=["Maize", "Beans"])])
        assert df.loc[0, "businessName"] == "Business 1"
        assert df.loc[0, "crops"] == "Maize, Beans"

    def test_empty(self):
        df = records_to_frame([])
        assert df.empty
        assert "businessName" in df.columns
