"""
Unit tests for the history stores — normalization, local append/read,
remote degradation, and variant selection.
"""
import json
import logging
import unittest
from unittest.mock import MagicMock

import httpx
import pytest

from config.workspace import CloudSettings
from memory.history import (
    InteractionRecord,
    LocalHistoryStore,
    RemoteHistoryStore,
    build_history_store,
    normalize_client_id,
)
from memory.local_store import LocalKeyValueStore
from orchestrator.errors import LocalStoreError, RemoteStoreError


@pytest.fixture
def kv(tmp_path):
    return LocalKeyValueStore(tmp_path / "workspace.json")


def _record(summary="Address change", policy="POL-1", date="2026-01-02 10:00:00"):
    return InteractionRecord(date=date, summary=summary, policy_number=policy)


# ============================================================
# Normalization
# ============================================================

def test_normalize_trims_and_casefolds():
    assert normalize_client_id("  Jane Doe ") == "jane doe"
    assert normalize_client_id("JANE DOE") == "jane doe"
    assert normalize_client_id(None) == ""
    assert normalize_client_id("   ") == ""


def test_variants_resolve_to_same_partition(kv):
    store = LocalHistoryStore(kv)
    store.append("Jane Doe", _record())
    expected = store.read("jane doe")
    assert len(expected) == 1
    for variant in ("JANE DOE", "  jane doe", "Jane Doe  ", "\tJaNe DoE\n"):
        assert store.read(variant) == expected


# ============================================================
# Local store
# ============================================================

def test_empty_partition_for_unknown_client(kv):
    assert LocalHistoryStore(kv).read("nobody") == []


def test_append_then_read_returns_record_first(kv):
    store = LocalHistoryStore(kv)
    older = _record("First contact", date="2026-01-01 09:00:00")
    newer = _record("Second contact", policy=None, date="2026-01-03 09:00:00")
    store.append("Max Muster", older)
    store.append("max muster", newer)

    history = store.read("Max Muster")
    assert history[0] == newer
    assert history[1] == older
    assert history[0].policy_number is None


def test_local_partition_capped(kv):
    store = LocalHistoryStore(kv, cap=10)
    for i in range(12):
        store.append("capped", _record(f"case {i}"))
    history = store.read("capped")
    assert len(history) == 10
    assert history[0].summary == "case 11"
    assert history[-1].summary == "case 2"


def test_local_uses_browser_key_layout(kv):
    LocalHistoryStore(kv).append(" Jane Doe ", _record(policy=None))
    raw = json.loads(kv.get("arag_memory_v2_jane doe"))
    assert raw == [{"date": "2026-01-02 10:00:00", "summary": "Address change"}]


def test_list_clients(kv):
    store = LocalHistoryStore(kv)
    store.append("B Client", _record())
    store.append("a client", _record())
    assert store.list_clients() == ["a client", "b client"]


def test_corrupt_partition_raises_local_store_error(kv):
    kv.set("arag_memory_v2_broken", "{not json")
    with pytest.raises(LocalStoreError):
        LocalHistoryStore(kv).read("broken")


@pytest.mark.parametrize("raw", ["{}", "\"x\"", "[1, 2]"])
def test_partition_of_wrong_shape_raises_local_store_error(kv, raw):
    kv.set("arag_memory_v2_odd", raw)
    with pytest.raises(LocalStoreError):
        LocalHistoryStore(kv).read("odd")


def test_corrupt_workspace_file_raises(tmp_path):
    path = tmp_path / "workspace.json"
    path.write_text("[1, 2, 3]")
    with pytest.raises(LocalStoreError):
        LocalKeyValueStore(path).get("anything")


# ============================================================
# Remote store
# ============================================================

class TestRemoteHistoryStore(unittest.TestCase):
    """PostgREST queries, inserts and failure handling with a mocked client."""

    def _make_store(self):
        client = MagicMock()
        store = RemoteHistoryStore("https://demo.supabase.co/", "anon-key", client=client)
        return store, client

    def _response(self, status=200, payload=None):
        resp = MagicMock()
        resp.status_code = status
        resp.json.return_value = payload
        resp.text = json.dumps(payload)
        return resp

    def test_read_queries_normalized_id_newest_first(self):
        store, client = self._make_store()
        client.request.return_value = self._response(payload=[
            {"client_id": "jane doe", "summary": "Newer", "date": "d2", "policy_number": None,
             "created_at": "2026-02-02T10:00:00Z"},
            {"client_id": "jane doe", "summary": "Older", "date": "d1", "policy_number": "P-7",
             "created_at": "2026-02-01T10:00:00Z"},
        ])

        history = store.read("  Jane Doe ")

        method, path = client.request.call_args.args
        params = client.request.call_args.kwargs["params"]
        self.assertEqual(method, "GET")
        self.assertEqual(path, "/rest/v1/client_memory")
        self.assertEqual(params["client_id"], "eq.jane doe")
        self.assertEqual(params["order"], "created_at.desc")
        self.assertEqual([r.summary for r in history], ["Newer", "Older"])
        self.assertIsNone(history[0].policy_number)
        self.assertEqual(history[1].policy_number, "P-7")

    def test_read_network_failure_returns_empty(self):
        store, client = self._make_store()
        client.request.side_effect = httpx.ConnectError("unreachable")
        self.assertEqual(store.read("jane doe"), [])

    def test_read_http_error_returns_empty(self):
        store, client = self._make_store()
        client.request.return_value = self._response(status=401, payload={"message": "bad key"})
        self.assertEqual(store.read("jane doe"), [])

    def test_query_raises_remote_store_error(self):
        store, client = self._make_store()
        client.request.return_value = self._response(payload={"not": "a list"})
        with self.assertRaises(RemoteStoreError):
            store.query("jane doe")

    def test_read_non_object_rows_returns_empty(self):
        store, client = self._make_store()
        client.request.return_value = self._response(payload=["not-a-row"])
        self.assertEqual(store.read("jane doe"), [])
        with self.assertRaises(RemoteStoreError):
            store.query("jane doe")

    def test_append_posts_row(self):
        store, client = self._make_store()
        client.request.return_value = self._response(status=201)

        store.append("Jane Doe ", _record(policy=None))

        method, path = client.request.call_args.args
        body = client.request.call_args.kwargs["json"]
        self.assertEqual(method, "POST")
        self.assertEqual(path, "/rest/v1/client_memory")
        self.assertEqual(body, {
            "client_id": "jane doe",
            "summary": "Address change",
            "date": "2026-01-02 10:00:00",
            "policy_number": None,
        })

    def test_append_failure_is_logged_not_raised(self):
        store, client = self._make_store()
        client.request.side_effect = httpx.ConnectError("unreachable")
        with self.assertLogs("copilot.history", level=logging.ERROR) as logs:
            store.append("jane doe", _record())
        self.assertIn("Remote history write failed", logs.output[0])


# ============================================================
# Variant selection
# ============================================================

def test_remote_selected_only_when_enabled_and_complete(kv):
    remote = build_history_store(CloudSettings("https://demo.supabase.co", "key", True), kv)
    assert remote.mode == "remote"
    remote.close()

    assert build_history_store(CloudSettings("https://demo.supabase.co", "key", False), kv).mode == "local"
    assert build_history_store(CloudSettings("", "key", True), kv).mode == "local"
    assert build_history_store(CloudSettings("https://demo.supabase.co", "  ", True), kv).mode == "local"
