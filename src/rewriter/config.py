"""
Configuration loader for the rewriter relay.

Values come from a YAML file; any string may carry ``${VAR}`` or
``${VAR:default}`` placeholders that are filled from the environment
(``.env`` is loaded first).
"""
import dataclasses
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

load_dotenv()

_PLACEHOLDER = re.compile(r"\$\{([^}:]+)(?::([^}]*))?\}")

CONFIG_ENV_VAR = "REWRITER_CONFIG"


def _coerce(text: str) -> Any:
    """Turn an interpolated string back into int / float / bool where it looks like one."""
    if text.isdigit():
        return int(text)
    if text.replace(".", "", 1).isdigit():
        return float(text)
    lowered = text.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    return text


def _interpolate(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _interpolate(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_interpolate(item) for item in value]
    if not isinstance(value, str):
        return value
    filled = _PLACEHOLDER.sub(
        lambda m: os.environ.get(m.group(1), m.group(2) or ""),
        value,
    )
    return _coerce(filled)

@dataclass
class AppConfig:
    name: str = "AI Rewriter"
    version: str = "1.0.0"
    host: str = "0.0.0.0"
    port: int = 8080
    env: str = "production"
    log_level: str = "INFO"
    log_json: bool = False


@dataclass
class OpenAIConfig:
    api_key: str = ""
    base_url: str = "https://api.openai.com/v1"
    default_model: str = "gpt-5-2025-08-07"
    max_completion_tokens: int = 4000
    timeout_seconds: float = 120.0
    connect_timeout_seconds: float = 10.0


@dataclass
class RelayConfig:
    path: str = "/functions/v1/ai-rewrite-chat"
    relay_timeout_seconds: float = 300.0


@dataclass
class StoreConfig:
    backend: str = "sql"  # sql | supabase
    database_url: str = "sqlite+aiosqlite:///./data/rewriter.db"
    echo: bool = False


@dataclass
class SupabaseConfig:
    url: str = ""
    service_role_key: str = ""
    jwt_secret: str = ""


@dataclass
class AuthConfig:
    verifier: str = "supabase"  # supabase | jwt
    jwt_algorithm: str = "HS256"
    jwt_audience: str = "authenticated"


@dataclass
class CorsConfig:
    allow_origins: List[str] = field(default_factory=lambda: ["*"])
    allow_headers: List[str] = field(default_factory=lambda: [
        "authorization", "x-client-info", "apikey", "content-type",
    ])


@dataclass
class Config:
    app: AppConfig = field(default_factory=AppConfig)
    openai: OpenAIConfig = field(default_factory=OpenAIConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    supabase: SupabaseConfig = field(default_factory=SupabaseConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    cors: CorsConfig = field(default_factory=CorsConfig)


def _section(cls, data: Any):
    """Build one config section, ignoring keys the dataclass does not know."""
    if not isinstance(data, dict):
        return cls()
    names = {f.name for f in dataclasses.fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in names})


def config_from_dict(raw: Dict[str, Any]) -> Config:
    """Build a Config from an already-parsed mapping (env placeholders resolved here)."""
    resolved = _interpolate(raw or {})
    cfg = Config()
    for f in dataclasses.fields(Config):
        if f.name in resolved:
            setattr(cfg, f.name, _section(f.default_factory, resolved[f.name]))
    return cfg


_CONFIG: Optional[Config] = None

_SEARCH_PATHS = (
    Path("config") / "app.yaml",
    Path(__file__).resolve().parents[2] / "config" / "app.yaml",
    Path.home() / ".rewriter" / "app.yaml",
)


def _find_config_file() -> Optional[Path]:
    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        return Path(explicit)
    return next((p for p in _SEARCH_PATHS if p.exists()), None)


def _read_yaml(path: Optional[Path]) -> Dict[str, Any]:
    if path is None or not path.exists():
        return {}
    with path.open() as fh:
        return yaml.safe_load(fh) or {}


def load_config(config_path: Optional[str] = None, reload: bool = False) -> Config:
    """Load the configuration once and cache it; ``reload=True`` forces a re-read."""
    global _CONFIG
    if _CONFIG is None or reload:
        path = Path(config_path) if config_path else _find_config_file()
        _CONFIG = config_from_dict(_read_yaml(path))
    return _CONFIG
