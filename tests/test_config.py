from mingled.cli import _build_arg_parser, build_config
from mingled.config import HubRuntimeConfig, apply_config_data


def test_apply_config_flattens_tables() -> None:
    cfg = apply_config_data(
        HubRuntimeConfig(config_path="/etc/mingled.toml"),
        {
            "hub": {
                "hub_name": "lobby",
                "admin_secret": "s3cret",
                "state_path": "",
                "history_sync_limit": 10,
                "config_path": "/elsewhere",
                "unknown_key": 1,
            },
            "logging": {"level": "DEBUG", "file": ""},
        },
    )
    assert cfg.hub_name == "lobby"
    assert cfg.admin_secret == "s3cret"
    assert cfg.state_path is None
    assert cfg.history_sync_limit == 10
    assert cfg.log_level == "DEBUG"
    assert cfg.log_file is None
    assert cfg.config_path == "/etc/mingled.toml"


def test_apply_config_announce_alias() -> None:
    cfg = apply_config_data(HubRuntimeConfig(), {"announce": False})
    assert cfg.announce_on_start is False


def test_cli_flags_override_file(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("MINGLED_ADMIN_SECRET", raising=False)
    conf = tmp_path / "mingled.toml"
    conf.write_text(
        '[hub]\nadmin_secret = "from-file"\nsave_interval_s = 10.0\n'
        'state_path = "/tmp/file-state.toml"\n',
        encoding="utf-8",
    )
    args = _build_arg_parser().parse_args(
        [
            "--config",
            str(conf),
            "--identity",
            str(tmp_path / "id"),
            "--state",
            str(tmp_path / "s.toml"),
            "--save-interval",
            "5",
        ]
    )
    cfg = build_config(args)
    assert cfg.admin_secret == "from-file"
    assert cfg.save_interval_s == 5.0
    assert cfg.state_path == str(tmp_path / "s.toml")


def test_admin_secret_from_environment(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("MINGLED_ADMIN_SECRET", "env-secret")
    args = _build_arg_parser().parse_args(
        ["--config", str(tmp_path / "missing.toml"), "--identity", str(tmp_path / "id")]
    )
    assert build_config(args).admin_secret == "env-secret"


def test_history_limits_are_capped() -> None:
    cfg = apply_config_data(
        HubRuntimeConfig(),
        {"hub": {"history_persist_limit": 500, "history_sync_limit": 80}},
    )
    assert cfg.history_persist_limit == 100
    assert cfg.history_sync_limit == 50

    cfg = apply_config_data(HubRuntimeConfig(), {"hub": {"history_sync_limit": 10}})
    assert cfg.history_sync_limit == 10
