"""
ARAG Agent Copilot — Configuration
All secrets loaded from environment variables.
Copy .env.example → .env and fill in your credentials.

These values only seed the workspace. Components receive their settings
through constructors; only entry points and factories read `config`.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from dotenv import load_dotenv

# Load .env before any os.getenv() calls in dataclass defaults
_ENV_PATH = Path(__file__).parent / ".env"
load_dotenv(_ENV_PATH, override=True)


@dataclass
class ClaudeConfig:
    api_key: str = os.getenv("ANTHROPIC_API_KEY", "")
    model: str = os.getenv("COPILOT_MODEL", "claude-sonnet-4-5")
    max_output_tokens: int = 4096
    # Single attempt, bounded; the SDK retries are disabled
    timeout_seconds: float = float(os.getenv("COPILOT_GENERATION_TIMEOUT", "90"))


@dataclass
class SupabaseConfig:
    url: str = os.getenv("SUPABASE_URL", "")
    api_key: str = os.getenv("SUPABASE_KEY", "")
    enabled: bool = os.getenv("SUPABASE_ENABLED", "false").lower() == "true"
    table: str = "client_memory"
    timeout_seconds: float = 15.0


@dataclass
class LocalStoreConfig:
    path: str = os.getenv(
        "COPILOT_DATA_PATH",
        str(Path.home() / ".arag_copilot" / "workspace.json"),
    )
    # Most recent records kept per client partition
    history_cap: int = 10


@dataclass
class DashboardConfig:
    api_key: str = os.getenv("COPILOT_API_KEY", "")
    allowed_origins: List[str] = field(default_factory=lambda: [
        o.strip()
        for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:8080").split(",")
        if o.strip()
    ])
    host: str = os.getenv("COPILOT_HOST", "127.0.0.1")
    port: int = int(os.getenv("COPILOT_PORT", "8080"))


@dataclass
class CopilotConfig:
    claude: ClaudeConfig = field(default_factory=ClaudeConfig)
    supabase: SupabaseConfig = field(default_factory=SupabaseConfig)
    local: LocalStoreConfig = field(default_factory=LocalStoreConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)
    debug: bool = os.getenv("COPILOT_DEBUG", "false").lower() == "true"


# Global config instance
config = CopilotConfig()
