from __future__ import annotations

from dataclasses import asdict, dataclass, replace

from .constants import (
    HISTORY_PERSIST_LIMIT,
    HISTORY_SYNC_LIMIT,
    NICK_MAX_CHARS,
    NICK_MIN_CHARS,
)


@dataclass(frozen=True)
class HubRuntimeConfig:
    config_path: str | None = None
    configdir: str | None = None
    identity_path: str | None = None
    state_path: str | None = None
    dest_name: str = "mingle.hub"
    announce_on_start: bool = True
    announce_period_s: float = 0.0
    hub_name: str = "mingle"
    # Shared secret for message removal. Empty disables removal.
    admin_secret: str = ""
    save_interval_s: float = 30.0
    history_persist_limit: int = HISTORY_PERSIST_LIMIT
    history_sync_limit: int = HISTORY_SYNC_LIMIT
    nick_min_chars: int = NICK_MIN_CHARS
    nick_max_chars: int = NICK_MAX_CHARS
    max_message_chars: int = 2000
    max_resource_bytes: int = 256 * 1024  # 256 KiB default
    enable_resource_transfer: bool = True
    log_level: str = "INFO"
    log_rns_level: str = "WARNING"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None


_LOGGING_KEYS = {
    "level": "log_level",
    "rns_level": "log_rns_level",
    "console": "log_console",
    "file": "log_file",
    "format": "log_format",
    "datefmt": "log_datefmt",
}

# Empty strings in the file mean "unset" for these fields.
_OPTIONAL_KEYS = ("configdir", "state_path", "log_file", "log_datefmt")

_LIMIT_CEILINGS = {
    "history_persist_limit": HISTORY_PERSIST_LIMIT,
    "history_sync_limit": HISTORY_SYNC_LIMIT,
}


def load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        data = tomllib.load(f)
    return data if isinstance(data, dict) else {}


def apply_config_data(base: HubRuntimeConfig, data: dict) -> HubRuntimeConfig:
    """Overlay a parsed config file onto ``base``.

    ``[hub]`` keys map directly onto config fields and ``[logging]`` keys map
    onto the ``log_*`` fields. Unknown keys are ignored.
    """
    hub = data.get("hub") if isinstance(data, dict) else None
    if isinstance(hub, dict):
        data = {**data, **hub}

    log_table = data.get("logging") if isinstance(data, dict) else None
    if isinstance(log_table, dict):
        mapped = {
            field: log_table.get(key)
            for key, field in _LOGGING_KEYS.items()
            if key in log_table
        }
        data = {**data, **mapped}

    allowed = set(asdict(base).keys())
    # This identifies where the file came from; do not let the file override it.
    allowed.discard("config_path")

    updates = {k: v for k, v in data.items() if k in allowed}

    if "announce" in data and "announce_on_start" not in updates:
        updates["announce_on_start"] = bool(data["announce"])
    for key in _OPTIONAL_KEYS:
        if key in updates and updates[key] == "":
            updates[key] = None
    if "admin_secret" in updates and updates["admin_secret"] is None:
        updates["admin_secret"] = ""
    # History limits are ceilings; larger values fall back to them.
    for key, ceiling in _LIMIT_CEILINGS.items():
        if key in updates:
            updates[key] = min(int(updates[key]), ceiling)

    return replace(base, **updates) if updates else base
