from __future__ import annotations

import os
from pathlib import Path


def default_mingled_dir() -> Path:
    override = os.environ.get("MINGLED_HOME")
    if override:
        return Path(override)
    return Path.home() / ".mingled"


def default_config_path() -> Path:
    return default_mingled_dir() / "mingled.toml"


def default_identity_path() -> Path:
    return default_mingled_dir() / "hub_identity"


def default_state_path() -> Path:
    return default_mingled_dir() / "state.toml"


def ensure_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    try:
        # chmod can fail on some filesystems.
        os.chmod(path, 0o700)
    except Exception:
        pass
