"""
ARAG Agent Copilot — Workspace configuration store.
Cloud settings, the playbook (rules + optional PDF handbook) and the API key,
persisted in the local workspace file across sessions. Global to the agent's
workspace; nothing here is scoped per client.
"""
import base64
import json
import logging
from dataclasses import dataclass, field
from typing import Optional

from memory.local_store import LocalKeyValueStore
from orchestrator.copilot_prompt import DEFAULT_PLAYBOOK
from orchestrator.errors import InvalidInputError

logger = logging.getLogger("copilot.workspace")

CLOUD_SETTINGS_KEY = "arag_cloud_settings"
PLAYBOOK_KEY = "arag_agent_playbook"
HANDBOOK_KEY = "arag_agent_handbook"
API_KEY_KEY = "arag_api_key"

_PDF_MAGIC = b"%PDF"


@dataclass
class CloudSettings:
    """Remote history store settings. Authoritative only when complete."""
    url: str = ""
    api_key: str = ""
    enabled: bool = False

    def to_dict(self) -> dict:
        return {"supabaseUrl": self.url, "supabaseKey": self.api_key, "enabled": self.enabled}

    @classmethod
    def from_dict(cls, data: dict) -> "CloudSettings":
        return cls(
            url=data.get("supabaseUrl", "") or "",
            api_key=data.get("supabaseKey", "") or "",
            enabled=bool(data.get("enabled", False)),
        )


@dataclass
class Handbook:
    name: str
    data: bytes = field(repr=False)


@dataclass
class PlaybookConfig:
    rules_text: str = DEFAULT_PLAYBOOK
    handbook: Optional[Handbook] = None

    @property
    def handbook_name(self) -> Optional[str]:
        return self.handbook.name if self.handbook else None


class ConfigStore:
    """Persisted workspace configuration on top of the local key-value store."""

    def __init__(self, kv: LocalKeyValueStore, default_cloud: CloudSettings = None,
                 default_api_key: str = ""):
        self.kv = kv
        self._default_cloud = default_cloud or CloudSettings()
        self._default_api_key = default_api_key

    # -------------------------------------------------------
    # Cloud settings
    # -------------------------------------------------------

    def get_cloud_settings(self) -> CloudSettings:
        raw = self.kv.get(CLOUD_SETTINGS_KEY)
        if not raw:
            return CloudSettings(**vars(self._default_cloud))
        try:
            return CloudSettings.from_dict(json.loads(raw))
        except (json.JSONDecodeError, AttributeError):
            logger.warning("Stored cloud settings unreadable, using defaults")
            return CloudSettings(**vars(self._default_cloud))

    def save_cloud_settings(self, settings: CloudSettings):
        self.kv.set(CLOUD_SETTINGS_KEY, json.dumps(settings.to_dict()))
        logger.info(f"Cloud settings saved (enabled={settings.enabled})")

    # -------------------------------------------------------
    # Playbook
    # -------------------------------------------------------

    def get_playbook(self) -> PlaybookConfig:
        rules = self.kv.get(PLAYBOOK_KEY)
        return PlaybookConfig(
            rules_text=rules if rules is not None else DEFAULT_PLAYBOOK,
            handbook=self._load_handbook(),
        )

    def save_playbook_rules(self, text: str):
        self.kv.set(PLAYBOOK_KEY, text)
        logger.info(f"Playbook rules saved ({len(text)} chars)")

    def _load_handbook(self) -> Optional[Handbook]:
        raw = self.kv.get(HANDBOOK_KEY)
        if not raw:
            return None
        try:
            blob = json.loads(raw)
            return Handbook(name=blob["name"], data=base64.b64decode(blob["data"]))
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            logger.warning(f"Stored handbook unreadable, ignoring it: {e}")
            return None

    def attach_handbook(self, name: str, data: bytes) -> Handbook:
        if not data or not data.startswith(_PDF_MAGIC):
            raise InvalidInputError("The handbook must be a PDF document.")
        self.kv.set(HANDBOOK_KEY, json.dumps({
            "name": name,
            "data": base64.b64encode(data).decode("ascii"),
        }))
        logger.info(f"Handbook attached: {name} ({len(data)} bytes)")
        return Handbook(name=name, data=data)

    def detach_handbook(self) -> bool:
        return self.kv.delete(HANDBOOK_KEY)

    # -------------------------------------------------------
    # API key
    # -------------------------------------------------------

    def get_api_key(self) -> str:
        return (self.kv.get(API_KEY_KEY) or self._default_api_key or "").strip()

    def save_api_key(self, key: str):
        self.kv.set(API_KEY_KEY, key.strip())

    def clear_api_key(self) -> bool:
        return self.kv.delete(API_KEY_KEY)


def open_config_store(settings=None) -> ConfigStore:
    """ConfigStore on the configured workspace file, seeded from the environment."""
    from config.settings import config
    settings = settings or config
    return ConfigStore(
        LocalKeyValueStore(settings.local.path),
        default_cloud=CloudSettings(
            url=settings.supabase.url,
            api_key=settings.supabase.api_key,
            enabled=settings.supabase.enabled,
        ),
        default_api_key=settings.claude.api_key,
    )
