"""
Integration tests for the workspace API.
Tests the endpoint contract; does NOT require live Claude or Supabase.
"""
import pytest
from unittest.mock import patch
from fastapi.testclient import TestClient

from config.workspace import ConfigStore
from memory.history import LocalHistoryStore
from memory.local_store import LocalKeyValueStore
from orchestrator.case import CaseOrchestrator
from orchestrator.errors import AuthenticationError, MissingCredentialError
from orchestrator.generation import CaseResult

HEADERS = {"X-Copilot-Key": "test-key"}


class StubGenerator:
    def __init__(self, error=None):
        self.error = error
        self.calls = 0

    def ensure_credential(self):
        if isinstance(self.error, MissingCredentialError):
            raise self.error

    def generate(self, envelope):
        self.calls += 1
        if self.error:
            raise self.error
        return CaseResult(
            analysis="Address change request.",
            recommendation="Update records.",
            next_steps="Confirm effective date.",
            reply_english="Dear Jane",
            reply_german="Liebe Jane",
            extracted_client_name="Jane Doe",
            extracted_policy_number="HH-1",
        )


@pytest.fixture
def workspace(tmp_path):
    kv = LocalKeyValueStore(tmp_path / "workspace.json")
    config_store = ConfigStore(kv)
    orch = CaseOrchestrator(LocalHistoryStore(kv), StubGenerator(),
                            playbook_provider=config_store.get_playbook)
    return config_store, orch


@pytest.fixture
def client(workspace):
    config_store, orch = workspace
    with patch("outputs.dashboard._COPILOT_API_KEY", "test-key"), \
         patch("outputs.dashboard._get_config_store", return_value=config_store), \
         patch("outputs.dashboard._get_workspace", return_value=orch):
        from outputs.dashboard import app
        yield TestClient(app)


def test_rejects_missing_api_key(client):
    assert client.get("/api/case").status_code == 401


def test_run_case_with_text(client):
    resp = client.post("/api/case", data={"client_id": "Jane Doe", "email_text": "I moved."}, headers=HEADERS)
    assert resp.status_code == 200
    body = resp.json()
    assert body["state"] == "succeeded"
    assert body["result"]["extracted_policy_number"] == "HH-1"
    assert body["history"][0]["policyNumber"] == "HH-1"

    history = client.get("/api/history/%20JANE%20DOE%20", headers=HEADERS).json()
    assert history["count"] == 1


def test_run_case_with_screenshot(client):
    png = b"\x89PNG\r\n\x1a\n" + b"\x00" * 8
    resp = client.post(
        "/api/case",
        files={"screenshot": ("mail.png", png, "image/png")},
        headers=HEADERS,
    )
    assert resp.status_code == 200
    assert resp.json()["client_id"] == "Jane Doe"


def test_run_case_without_input_is_400(client):
    resp = client.post("/api/case", data={"client_id": "jane"}, headers=HEADERS)
    assert resp.status_code == 400


def test_run_case_twice_is_409_until_reset(client):
    client.post("/api/case", data={"email_text": "hello"}, headers=HEADERS)
    assert client.post("/api/case", data={"email_text": "hello"}, headers=HEADERS).status_code == 409

    reset = client.post("/api/case/reset", headers=HEADERS).json()
    assert reset["state"] == "idle"
    assert client.post("/api/case", data={"email_text": "hello"}, headers=HEADERS).status_code == 200


@pytest.mark.parametrize("error, status, kind", [
    (MissingCredentialError(), 428, "missing_credential"),
    (AuthenticationError("rejected"), 401, "authentication_failed"),
])
def test_failed_case_status_codes(client, workspace, error, status, kind):
    _, orch = workspace
    orch.set_generator(StubGenerator(error=error))
    resp = client.post("/api/case", data={"email_text": "hello"}, headers=HEADERS)
    assert resp.status_code == status
    assert resp.json()["error"]["kind"] == kind


def test_playbook_update_and_handbook(client):
    assert client.put("/api/playbook", json={"rules_text": "[RULE] be kind"}, headers=HEADERS).status_code == 200
    assert client.get("/api/playbook", headers=HEADERS).json()["rules_text"] == "[RULE] be kind"

    bad = client.post("/api/playbook/handbook", files={"file": ("a.txt", b"text", "text/plain")}, headers=HEADERS)
    assert bad.status_code == 400

    ok = client.post("/api/playbook/handbook", files={"file": ("rules.pdf", b"%PDF-1.4", "application/pdf")},
                     headers=HEADERS)
    assert ok.json()["handbook_name"] == "rules.pdf"
    assert client.delete("/api/playbook/handbook", headers=HEADERS).json()["status"] == "removed"


def test_cloud_settings_switch_history_store(client, workspace):
    _, orch = workspace
    resp = client.put(
        "/api/settings/cloud",
        json={"url": "https://demo.supabase.co", "api_key": "anon-key-123456", "enabled": True},
        headers=HEADERS,
    )
    assert resp.json()["authoritative"] is True
    assert orch.history_store.mode == "remote"

    masked = client.get("/api/settings/cloud", headers=HEADERS).json()
    assert masked["api_key"] != "anon-key-123456"

    client.put("/api/settings/cloud", json={"url": "", "api_key": "", "enabled": False}, headers=HEADERS)
    assert orch.history_store.mode == "local"


def test_run_case_with_screenshot_and_text_is_400(client, workspace):
    _, orch = workspace
    png = b"\x89PNG\r\n\x1a\n" + b"\x00" * 8
    resp = client.post(
        "/api/case",
        data={"email_text": "I moved."},
        files={"screenshot": ("mail.png", png, "image/png")},
        headers=HEADERS,
    )
    assert resp.status_code == 400
    assert "not both" in resp.json()["detail"]
    assert orch.state.value == "idle"
