from __future__ import annotations

import argparse
import os
import sys
from dataclasses import replace
from pathlib import Path

import RNS

from .config import HubRuntimeConfig, apply_config_data, load_toml
from .logging_config import configure_logging
from .paths import (
    default_config_path,
    default_identity_path,
    default_state_path,
    ensure_private_dir,
)
from .service import HubService


def _write_default_config(config_path: str, identity_path: str, state_path: str) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(Path(cfg_dir))

    content = f"""# mingled configuration (TOML)
#
# This file was created on first run.
# Edit it, then start mingled again.

[hub]

# Optional: Reticulum configuration directory.
# If left unset, Reticulum will choose its default (usually ~/.reticulum).
configdir = ""

# Where mingled stores its persistent identity (Reticulum Identity file).
identity_path = {identity_path!r}

# Snapshot of recent public messages, likes and private rooms.
# Rewritten while the hub runs; leave empty to keep state in memory only.
state_path = {state_path!r}

# Destination name to host the hub on.
dest_name = "mingle.hub"

# announce_on_start: send a single announce right after startup.
# announce_period_s: if >0, periodically re-announce.
announce_on_start = true
announce_period_s = 0.0

hub_name = "mingle"

# Shared secret required to remove public messages.
# Leave empty to disable removal. MINGLED_ADMIN_SECRET overrides this value.
admin_secret = ""

# Seconds between safety-net saves. Saves also happen after every accepted
# public message, new like and removal.
save_interval_s = 30.0

# History limits: how many public messages are kept in the state file, and
# how many are sent to a user when they join.
history_persist_limit = 100
history_sync_limit = 50

# Nickname length policy (Unicode characters).
nick_min_chars = 2
nick_max_chars = 20

# Maximum public/private message length (Unicode characters). 0 disables.
max_message_chars = 2000

# Payloads larger than the link MTU travel as RNS.Resource.
enable_resource_transfer = true
max_resource_bytes = 262144

[logging]

# Log level for mingled itself.
level = "INFO"

# Log level for Reticulum/RNS Python logging (if used by your install).
rns_level = "WARNING"

# Log to stderr (systemd/journald friendly).
console = true

# Optional file path for logs (leave empty to disable).
file = ""

# Log format and optional date format.
format = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
datefmt = ""
"""

    with open(config_path, "w", encoding="utf-8") as f:
        f.write(content)


def _ensure_first_run_files(config_path: str, identity_path: str, state_path: str) -> bool:
    created_any = False

    if not os.path.exists(config_path):
        _write_default_config(config_path, identity_path, state_path)
        created_any = True

    if not os.path.exists(identity_path):
        storage_dir = os.path.dirname(identity_path)
        if storage_dir:
            ensure_private_dir(Path(storage_dir))
        ident = RNS.Identity()
        ident.to_file(identity_path)
        try:
            os.chmod(identity_path, 0o600)
        except Exception:
            pass
        created_any = True

    return created_any


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="mingled", description="Run a mingle chat hub over Reticulum"
    )

    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument("--configdir", default=None, help="Reticulum config directory")
    p.add_argument(
        "--identity",
        default=str(default_identity_path()),
        help="Path to hub identity file (created on first run)",
    )
    p.add_argument(
        "--state",
        default=None,
        help="Path to the state snapshot file (empty keeps state in memory only)",
    )
    p.add_argument(
        "--dest-name", default=None, help="Destination app name (default: mingle.hub)"
    )
    p.add_argument(
        "--no-announce",
        action="store_true",
        help="Disable announce on start (does not affect periodic announce)",
    )
    p.add_argument(
        "--announce-period",
        type=float,
        default=None,
        help="Periodic announce interval seconds (0 disables)",
    )
    p.add_argument("--hub-name", default=None, help="Hub name used in announces")
    p.add_argument(
        "--admin-secret",
        default=None,
        help="Shared secret for message removal (prefer MINGLED_ADMIN_SECRET)",
    )
    p.add_argument(
        "--save-interval",
        type=float,
        default=None,
        help="Seconds between safety-net state saves",
    )
    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )

    return p


def build_config(args: argparse.Namespace) -> HubRuntimeConfig:
    config_path = str(args.config)

    cfg = HubRuntimeConfig(
        config_path=config_path,
        configdir=args.configdir,
        identity_path=str(args.identity),
        state_path=str(default_state_path()),
    )

    if config_path and os.path.exists(config_path):
        cfg = apply_config_data(cfg, load_toml(config_path))

    if args.configdir is not None:
        cfg = replace(cfg, configdir=args.configdir or None)
    if args.state is not None:
        cfg = replace(cfg, state_path=str(args.state) or None)
    if args.dest_name is not None:
        cfg = replace(cfg, dest_name=args.dest_name)

    if args.no_announce:
        cfg = replace(cfg, announce_on_start=False)
    if args.announce_period is not None:
        cfg = replace(cfg, announce_period_s=float(args.announce_period))

    if args.hub_name is not None:
        cfg = replace(cfg, hub_name=args.hub_name)

    env_secret = os.environ.get("MINGLED_ADMIN_SECRET")
    if env_secret is not None:
        cfg = replace(cfg, admin_secret=env_secret)
    if args.admin_secret is not None:
        cfg = replace(cfg, admin_secret=str(args.admin_secret))

    if args.save_interval is not None:
        cfg = replace(cfg, save_interval_s=float(args.save_interval))

    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    return cfg


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    config_path = str(args.config)
    identity_path = str(args.identity)
    state_path = str(args.state) if args.state else str(default_state_path())

    if _ensure_first_run_files(config_path, identity_path, state_path):
        print(
            "Created default mingled files. Edit the configuration before starting:\n"
            f"- Config:   {config_path}\n"
            f"- Identity: {identity_path}\n"
            "\nThen re-run mingled.",
            file=sys.stderr,
        )
        raise SystemExit(0)

    cfg = build_config(args)

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    svc = HubService(cfg)
    svc.start()
    svc.run_forever()


if __name__ == "__main__":
    main()
