"""Configuration constants, .env parsing, and per-agent execution modes."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def read_env_file(keys: list[str]) -> dict[str, str]:
    """Parse .env file and return values for requested keys.

    Does NOT load into os.environ; callers decide what to do with values.
    """
    env_file = Path.cwd() / ".env"
    try:
        content = env_file.read_text()
    except OSError:
        return {}

    result: dict[str, str] = {}
    wanted = set(keys)

    for line in content.splitlines():
        trimmed = line.strip()
        if not trimmed or trimmed.startswith("#"):
            continue
        eq_idx = trimmed.find("=")
        if eq_idx == -1:
            continue
        key = trimmed[:eq_idx].strip()
        if key not in wanted:
            continue
        value = trimmed[eq_idx + 1 :].strip()
        if (value.startswith('"') and value.endswith('"')) or (value.startswith("'") and value.endswith("'")):
            value = value[1:-1]
        if value:
            result[key] = value

    return result


_ENV_KEYS = [
    "SWITCHBOARD_STORE_DIR",
    "TZ",
    "AGENT_MODES",
    "CHRONOS_CHECK_INTERVAL",
    "CHRONOS_MAX_ACTIVE_JOBS",
    "NOTIFIER_MAX_ATTEMPTS",
    "DELEGATION_LIMIT",
]
_env_config = read_env_file(_ENV_KEYS)


def _setting(key: str, default: str) -> str:
    return os.environ.get(key) or _env_config.get(key, default)


# Absolute paths
PROJECT_ROOT: Path = Path.cwd()
STORE_DIR: Path = Path(_setting("SWITCHBOARD_STORE_DIR", str(PROJECT_ROOT / "store"))).resolve()
DB_PATH: Path = STORE_DIR / "switchboard.db"

# Task notifier
NOTIFIER_POLL_INTERVAL: float = 1.2  # seconds
NOTIFIER_MAX_ATTEMPTS: int = max(1, int(_setting("NOTIFIER_MAX_ATTEMPTS", "5")))
NOTIFY_STALE_SENDING: float = 30.0
NOTIFY_ACK_GRACE: float = 1.0  # telegram/discord results wait for the ack message
ACK_FALLBACK: float = 60.0

# Task worker
TASK_WORKER_POLL_INTERVAL: float = 1.0
TASK_STALE_RUNNING: float = 300.0
TASK_DEFAULT_MAX_ATTEMPTS: int = 3
TASK_MAX_BACKOFF: float = 30.0

# Chronos
CHRONOS_CHECK_INTERVAL: float = float(_setting("CHRONOS_CHECK_INTERVAL", "60"))
CHRONOS_MIN_CHECK_INTERVAL: float = 60.0
CHRONOS_MAX_ACTIVE_JOBS: int = int(_setting("CHRONOS_MAX_ACTIVE_JOBS", "100"))
CHRONOS_EXECUTION_HISTORY: int = 100
CHRONOS_MIN_SPACING: float = 60.0

# Delegation
DELEGATION_LIMIT: int = int(_setting("DELEGATION_LIMIT", "6"))

# Approval gate
APPROVAL_POLL_INTERVAL: float = 2.0
APPROVAL_TIMEOUT: float = 10 * 60.0

# Shutdown
SHUTDOWN_GRACE: float = 10.0  # seconds in-flight work gets before it is cancelled

# Dispatcher
MAX_RESULT_CHARS: int = 3500


def _resolve_timezone() -> str:
    tz = _setting("TZ", "")
    if not tz:
        tz_file = Path("/etc/timezone")
        try:
            if tz_file.exists():
                tz = tz_file.read_text().strip()
            else:
                # /etc/localtime -> /usr/share/zoneinfo/America/New_York
                parts = Path("/etc/localtime").resolve().parts
                if "zoneinfo" in parts:
                    tz = "/".join(parts[parts.index("zoneinfo") + 1 :])
        except OSError:
            tz = ""

    if not tz:
        return "UTC"

    try:
        ZoneInfo(tz)
        return tz
    except (ZoneInfoNotFoundError, ValueError):
        return "UTC"


TIMEZONE: str = _resolve_timezone()


ExecutionMode = Literal["sync", "async"]


def parse_agent_modes(raw: str) -> dict[str, ExecutionMode]:
    """Parse ``"neo:sync,smith:async"`` into a mode map. Unknown modes are ignored."""
    modes: dict[str, ExecutionMode] = {}
    for item in raw.split(","):
        agent, _, mode = item.strip().partition(":")
        agent = agent.strip().lower()
        mode = mode.strip().lower()
        if agent and mode in ("sync", "async"):
            modes[agent] = mode  # type: ignore[assignment]
    return modes


AGENT_EXECUTION_MODES: dict[str, ExecutionMode] = parse_agent_modes(_setting("AGENT_MODES", ""))


def agent_execution_mode(agent: str) -> ExecutionMode:
    return AGENT_EXECUTION_MODES.get(agent, "async")
