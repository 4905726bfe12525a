from __future__ import annotations

import os
import sys
from pathlib import Path

from loguru import logger


_ENV_PRIORITY = (".env.local", ".env.production", ".env.development", ".env.test")

_ENV_PREFIX = "LOOM_INTROSPECT_"

_DEFAULT_TIMEOUT_MS = 30_000
_DEFAULT_CACHE_TTL_SECONDS = 3_600.0
_DEFAULT_RUNNER_BASE_URL = "http://127.0.0.1:8080/v1"
_DEFAULT_LOG_LEVEL = "WARNING"


def get_prefixed_env(name: str) -> str | None:
    return os.environ.get(f"{_ENV_PREFIX}{name}")


def _parse_env_line(line: str) -> tuple[str, str] | None:
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None
    if "=" not in stripped:
        return None
    key, value = stripped.split("=", 1)
    key = key.strip()
    value = value.strip()
    if not key:
        return None
    if (value.startswith("'") and value.endswith("'")) or (
        value.startswith('"') and value.endswith('"')
    ):
        value = value[1:-1]
    return key, value


def load_env_files(root: str | Path | None = None) -> list[Path]:
    """
    Load env files by priority:
    `.env.local > .env.production > .env.development > .env.test`.

    Higher priority files are applied first and nothing overrides a variable
    that is already set in the process environment.
    """
    base = Path(root) if root is not None else Path.cwd()
    loaded: list[Path] = []
    for name in _ENV_PRIORITY:
        path = base / name
        if not path.is_file():
            continue
        loaded.append(path)
        for line in path.read_text(encoding="utf-8").splitlines():
            parsed = _parse_env_line(line)
            if parsed is None:
                continue
            key, value = parsed
            os.environ.setdefault(key, value)
    return loaded


def _positive_int(name: str, default: int) -> int:
    raw = get_prefixed_env(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(1, value)


def get_default_timeout_ms() -> int:
    return _positive_int("TIMEOUT_MS", _DEFAULT_TIMEOUT_MS)


def get_cache_ttl_seconds() -> float:
    raw = get_prefixed_env("CACHE_TTL_SECONDS")
    if raw is None:
        return _DEFAULT_CACHE_TTL_SECONDS
    try:
        value = float(raw)
    except ValueError:
        return _DEFAULT_CACHE_TTL_SECONDS
    if value != value or value < 0:
        return _DEFAULT_CACHE_TTL_SECONDS
    return value


def get_runner_base_url() -> str:
    raw = (get_prefixed_env("RUNNER_BASE_URL") or "").strip()
    return (raw or _DEFAULT_RUNNER_BASE_URL).rstrip("/")


def get_runner_api_key() -> str | None:
    raw = (get_prefixed_env("RUNNER_API_KEY") or "").strip()
    return raw or None


def get_family_profiles_path() -> Path | None:
    raw = (get_prefixed_env("FAMILY_PROFILES_PATH") or "").strip()
    if not raw:
        return None
    return Path(raw).expanduser()


def get_log_level() -> str:
    raw = (get_prefixed_env("LOG_LEVEL") or "").strip().upper()
    return raw or _DEFAULT_LOG_LEVEL


def get_mcp_host_port() -> tuple[str, int]:
    host = (get_prefixed_env("MCP_HOST") or "").strip() or "127.0.0.1"
    port = _positive_int("MCP_PORT", 6101)
    if port > 65535:
        port = 65535
    return host, port


def configure_logging(level: str | None = None) -> None:
    """Route loguru output to stderr at `level` (entry points only; library code adds no sinks)."""
    logger.remove()
    logger.add(sys.stderr, level=(level or get_log_level()).upper())
