import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import yaml

from .exceptions import ConfigError
from .models import IpVersion, Protocol
from .rule_naming import HASH_SUFFIX_LENGTH, name_head

logger = logging.getLogger(__name__)

SCOPES = ("site", "group", "account", "tenant")

DEFAULT_SOURCES = [
    {"name": "zscaler-cenr", "url": "https://config.zscaler.com/api/zscaler.net/cenr/json"},
    {"name": "zscaler-future", "url": "https://config.zscaler.com/api/zscaler.net/future/json"},
    {"name": "zscaler-hubs-recommended", "url": "https://config.zscaler.com/api/zscaler.net/hubs/cidr/json/recommended"},
    {"name": "zscaler-hubs-required", "url": "https://config.zscaler.com/api/zscaler.net/hubs/cidr/json/required"},
]

DEFAULT_RULE_PREFIX = "Zscaler-AutoManaged"
DEFAULT_RULE_DESCRIPTION = "Auto-managed rule for published Zscaler address ranges"


def _normalize_url(url: str, key: str) -> str:
    """Normalize a base URL and ensure it has a host."""
    u = url.strip().rstrip("/")
    # Collapse extra slashes after :// (e.g. https:///host -> https://host)
    u = re.sub(r"(https?):///+", r"\1://", u)
    parsed = urlparse(u)
    if not parsed.netloc:
        raise ConfigError(
            f"{key} has no host: {url!r}. "
            "Use e.g. https://console.example.com (no extra slashes)."
        )
    return u


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in {"1", "true", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "no", "n", "off"}:
        return False
    raise ConfigError(f"Invalid boolean value for {name}={raw!r} (expected true/false).")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}.") from exc


def _as_int(value: Any, key: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{key} must be an integer") from exc


def _as_float(value: Any, key: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be a number")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{key} must be a number") from exc


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y", "on"}
    raise ConfigError(f"{key} must be boolean")


@dataclass
class RangeSource:
    name: str
    url: str


@dataclass
class PolicyStoreSettings:
    url: str
    api_token: str
    scope: str = "tenant"
    scope_id: Optional[str] = None
    timeout: int = 60
    verify_ssl: bool = True


@dataclass
class RetrySettings:
    max_attempts: int = 3
    base_delay: float = 2.0


@dataclass
class Settings:
    policy_store: PolicyStoreSettings
    sources: List[RangeSource]
    data_dir: Path
    state_file: Path
    cache_dir: Path
    retry: RetrySettings = field(default_factory=RetrySettings)
    rule_prefix: str = DEFAULT_RULE_PREFIX
    rule_description: str = DEFAULT_RULE_DESCRIPTION
    port: int = 443
    protocols: List[Protocol] = field(default_factory=lambda: [Protocol.TCP, Protocol.UDP])
    max_name_length: int = 100
    action: str = "Allow"
    direction: str = "outbound"
    os_types: List[str] = field(default_factory=lambda: ["windows", "macos", "linux"])
    source_timeout: int = 30
    fetch_workers: int = 1
    use_cached_data: bool = False
    log_level: str = "INFO"
    log_dir: Optional[Path] = None


def _read_secret_file(path: Optional[str]) -> Optional[str]:
    if not path:
        return None
    p = Path(path)
    if not p.is_file():
        logger.warning("Secret file %s does not exist", p)
        return None
    return p.read_text(encoding="utf-8").strip()


def _validate_scope(scope: str, scope_id: Optional[str]) -> None:
    if scope not in SCOPES:
        raise ConfigError(f"policy scope must be one of {', '.join(SCOPES)}; got {scope!r}")
    if scope != "tenant" and not scope_id:
        raise ConfigError(f"policy scope {scope!r} requires a scope id (only 'tenant' scope may omit it)")


def _parse_sources(raw: object) -> List[RangeSource]:
    """Parse a list of {name, url} mappings; None means the built-in defaults."""
    if raw is None:
        raw = DEFAULT_SOURCES
    if not isinstance(raw, list) or not raw:
        raise ConfigError("sources must be a non-empty list of {name, url} mappings")

    sources: List[RangeSource] = []
    seen: set[str] = set()
    for item in raw:
        if not isinstance(item, dict):
            raise ConfigError(f"Each source must be a mapping with name and url, got {item!r}")
        name = item.get("name")
        url = item.get("url")
        if not isinstance(name, str) or not name.strip():
            raise ConfigError("Each source needs a non-empty name")
        if not isinstance(url, str) or not url.strip():
            raise ConfigError(f"Source {name!r} is missing url")
        if name in seen:
            raise ConfigError(f"Duplicate source name {name!r}")
        seen.add(name)
        sources.append(RangeSource(name=name.strip(), url=url.strip()))
    return sources


def _validate_common(settings: Settings) -> Settings:
    if settings.retry.max_attempts < 1:
        raise ConfigError("retry.max_attempts must be >= 1")
    if settings.retry.base_delay < 0:
        raise ConfigError("retry.base_delay must be >= 0")
    if not 1 <= settings.port <= 65535:
        raise ConfigError(f"port must be between 1 and 65535, got {settings.port}")
    # Longest head (IPv6 + UDP) plus the hash suffix must fit, otherwise
    # rule names for the same range stop being distinct.
    longest_head = name_head(settings.rule_prefix, IpVersion.V6, Protocol.UDP, settings.port)
    if len(longest_head) + HASH_SUFFIX_LENGTH > settings.max_name_length:
        raise ConfigError(
            f"max_name_length={settings.max_name_length} is too short for rule prefix "
            f"{settings.rule_prefix!r}; need at least {len(longest_head) + HASH_SUFFIX_LENGTH}"
        )
    if settings.fetch_workers < 1:
        raise ConfigError("fetch_workers must be >= 1")
    if not settings.rule_prefix.strip():
        raise ConfigError("rule_prefix must not be empty")
    _validate_scope(settings.policy_store.scope, settings.policy_store.scope_id)

    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.cache_dir.mkdir(parents=True, exist_ok=True)
    return settings


def _load_settings_from_yaml(path: str) -> Settings:
    """Load settings from a single YAML config file."""
    p = Path(path)
    if not p.is_file():
        raise ConfigError(f"APP_CONFIG_FILE not found: {path}")

    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to read YAML config: {path}") from exc

    if not isinstance(raw, dict):
        raise ConfigError("YAML config root must be a mapping/object")

    # Policy store config
    ps = raw.get("policy_store") or {}
    if not isinstance(ps, dict):
        raise ConfigError("policy_store must be a mapping/object")

    ps_url = ps.get("url")
    if not isinstance(ps_url, str) or not ps_url.strip():
        raise ConfigError("policy_store.url is required")

    token: Optional[str] = None
    if isinstance(ps.get("api_token"), str) and ps["api_token"].strip():
        token = ps["api_token"].strip()
    elif isinstance(ps.get("api_token_file"), str) and ps["api_token_file"].strip():
        token = _read_secret_file(ps["api_token_file"].strip())
    if not token:
        raise ConfigError("policy_store.api_token (or policy_store.api_token_file) is required")

    scope_id = ps.get("scope_id")
    policy_store = PolicyStoreSettings(
        url=_normalize_url(ps_url, "policy_store.url"),
        api_token=token,
        scope=str(ps.get("scope", "tenant")).strip().lower(),
        scope_id=str(scope_id).strip() if scope_id not in (None, "") else None,
        timeout=_as_int(ps.get("timeout", 60), "policy_store.timeout"),
        verify_ssl=_as_bool(ps.get("verify_ssl", True), "policy_store.verify_ssl"),
    )

    # Rule config
    rules = raw.get("rules") or {}
    if not isinstance(rules, dict):
        raise ConfigError("rules must be a mapping/object")

    # Retry config
    retry_raw = raw.get("retry") or {}
    if not isinstance(retry_raw, dict):
        raise ConfigError("retry must be a mapping/object")
    retry = RetrySettings(
        max_attempts=_as_int(retry_raw.get("max_attempts", 3), "retry.max_attempts"),
        base_delay=_as_float(retry_raw.get("base_delay", 2.0), "retry.base_delay"),
    )

    # Runtime config
    runtime = raw.get("runtime") or {}
    if not isinstance(runtime, dict):
        raise ConfigError("runtime must be a mapping/object")

    data_dir = Path(str(runtime.get("data_dir", "/app/data")))
    state_file = Path(str(runtime.get("state_file", data_dir / "sync_state.json")))
    cache_dir = Path(str(runtime.get("cache_dir", data_dir / "cache")))
    log_dir = runtime.get("log_dir")

    os_types = rules.get("os_types", ["windows", "macos", "linux"])
    if not isinstance(os_types, list) or not all(isinstance(o, str) for o in os_types):
        raise ConfigError("rules.os_types must be a list of strings")

    settings = Settings(
        policy_store=policy_store,
        sources=_parse_sources(raw.get("sources")),
        data_dir=data_dir,
        state_file=state_file,
        cache_dir=cache_dir,
        retry=retry,
        rule_prefix=str(rules.get("prefix", DEFAULT_RULE_PREFIX)),
        rule_description=str(rules.get("description", DEFAULT_RULE_DESCRIPTION)),
        port=_as_int(rules.get("port", 443), "rules.port"),
        max_name_length=_as_int(rules.get("max_name_length", 100), "rules.max_name_length"),
        action=str(rules.get("action", "Allow")),
        direction=str(rules.get("direction", "outbound")),
        os_types=os_types,
        source_timeout=_as_int(runtime.get("source_timeout", 30), "runtime.source_timeout"),
        fetch_workers=_as_int(runtime.get("fetch_workers", 1), "runtime.fetch_workers"),
        use_cached_data=_as_bool(runtime.get("use_cached_data", False), "runtime.use_cached_data"),
        log_level=str(runtime.get("log_level", "INFO")),
        log_dir=Path(str(log_dir)) if log_dir else None,
    )
    return _validate_common(settings)


def _load_sources_file(path: Optional[str]) -> Optional[List[Dict[str, Any]]]:
    if not path:
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError as exc:
        raise ConfigError(f"Range sources file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Range sources file is not valid JSON: {path}") from exc


def load_settings() -> Settings:
    """Load settings from YAML (APP_CONFIG_FILE) or, failing that, environment variables."""

    # YAML-first mode (single source of truth)
    app_config_file = os.getenv("APP_CONFIG_FILE")
    if app_config_file:
        return _load_settings_from_yaml(app_config_file)

    # Legacy mode (env + optional sources JSON file)
    ps_url = os.getenv("POLICY_STORE_URL")
    if not ps_url:
        raise ConfigError(
            "POLICY_STORE_URL not set. Set APP_CONFIG_FILE to a YAML config or export "
            "POLICY_STORE_URL=https://console.example.com"
        )

    # Prioritize direct env var over file-based token
    token = os.getenv("POLICY_STORE_API_TOKEN")
    if not token:
        token = _read_secret_file(os.getenv("POLICY_STORE_API_TOKEN_FILE", "secrets/policy_store_api_token"))
    if not token:
        raise ConfigError(
            "Policy store API token not configured. Set POLICY_STORE_API_TOKEN or "
            "POLICY_STORE_API_TOKEN_FILE (default: secrets/policy_store_api_token)."
        )

    policy_store = PolicyStoreSettings(
        url=_normalize_url(ps_url, "POLICY_STORE_URL"),
        api_token=token,
        scope=os.getenv("POLICY_SCOPE", "tenant").strip().lower(),
        scope_id=os.getenv("POLICY_SCOPE_ID") or None,
        timeout=_env_int("POLICY_STORE_TIMEOUT", 60),
        verify_ssl=_env_bool("POLICY_STORE_VERIFY_SSL", default=True),
    )

    data_dir = Path(os.getenv("SYNC_DATA_DIR", "/app/data"))
    log_dir = os.getenv("LOG_DIR")

    settings = Settings(
        policy_store=policy_store,
        sources=_parse_sources(_load_sources_file(os.getenv("RANGE_SOURCES_FILE"))),
        data_dir=data_dir,
        state_file=Path(os.getenv("STATE_FILE", str(data_dir / "sync_state.json"))),
        cache_dir=Path(os.getenv("CACHE_DIR", str(data_dir / "cache"))),
        retry=RetrySettings(
            max_attempts=_env_int("RETRY_MAX_ATTEMPTS", 3),
            base_delay=float(_env_int("RETRY_BASE_DELAY", 2)),
        ),
        rule_prefix=os.getenv("RULE_PREFIX", DEFAULT_RULE_PREFIX),
        port=_env_int("RULE_PORT", 443),
        fetch_workers=_env_int("FETCH_WORKERS", 1),
        use_cached_data=_env_bool("USE_CACHED_DATA", default=False),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_dir=Path(log_dir) if log_dir else None,
    )
    return _validate_common(settings)
