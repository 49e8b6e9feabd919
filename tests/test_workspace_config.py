"""Unit tests for the persisted workspace configuration."""
import pytest

from config.workspace import CloudSettings, ConfigStore
from memory.local_store import LocalKeyValueStore
from orchestrator.copilot_prompt import DEFAULT_PLAYBOOK
from orchestrator.errors import InvalidInputError


@pytest.fixture
def store(tmp_path):
    return ConfigStore(
        LocalKeyValueStore(tmp_path / "workspace.json"),
        default_cloud=CloudSettings(url="https://env.supabase.co", api_key="env-key", enabled=False),
        default_api_key="sk-env",
    )


def test_defaults_when_nothing_persisted(store):
    assert store.get_cloud_settings() == CloudSettings("https://env.supabase.co", "env-key", False)
    assert store.get_playbook().rules_text == DEFAULT_PLAYBOOK
    assert store.get_playbook().handbook is None
    assert store.get_api_key() == "sk-env"


def test_cloud_settings_persist_across_instances(store, tmp_path):
    store.save_cloud_settings(CloudSettings("https://demo.supabase.co", "anon", True))
    reopened = ConfigStore(LocalKeyValueStore(tmp_path / "workspace.json"))
    assert reopened.get_cloud_settings() == CloudSettings("https://demo.supabase.co", "anon", True)


def test_cloud_settings_stored_in_browser_shape(store):
    store.save_cloud_settings(CloudSettings("https://demo.supabase.co", "anon", True))
    assert store.kv.get("arag_cloud_settings") == (
        '{"supabaseUrl": "https://demo.supabase.co", "supabaseKey": "anon", "enabled": true}'
    )


def test_playbook_rules_round_trip(store):
    store.save_playbook_rules("[RULE: ONLY]\n- Be brief.")
    assert store.get_playbook().rules_text == "[RULE: ONLY]\n- Be brief."


def test_empty_playbook_is_respected(store):
    store.save_playbook_rules("")
    assert store.get_playbook().rules_text == ""


def test_handbook_attach_and_detach(store):
    store.attach_handbook("handbook.pdf", b"%PDF-1.7 body")
    playbook = store.get_playbook()
    assert playbook.handbook_name == "handbook.pdf"
    assert playbook.handbook.data == b"%PDF-1.7 body"

    assert store.detach_handbook() is True
    assert store.get_playbook().handbook is None
    assert store.detach_handbook() is False


def test_handbook_must_be_pdf(store):
    with pytest.raises(InvalidInputError):
        store.attach_handbook("notes.txt", b"plain text")


def test_saved_api_key_overrides_env(store):
    store.save_api_key("  sk-saved ")
    assert store.get_api_key() == "sk-saved"
    store.clear_api_key()
    assert store.get_api_key() == "sk-env"
