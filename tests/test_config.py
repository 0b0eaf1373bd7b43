"""Tests for matprov.toml loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from matprov.config import DEFAULT_LIFETIME_SECONDS, MatprovConfig, load_config, parse_config


def test_missing_file_gives_defaults(tmp_path: Path) -> None:
    assert load_config(tmp_path / "matprov.toml") == MatprovConfig()
    assert load_config(None) == MatprovConfig()
    assert MatprovConfig().default_lifetime_seconds == DEFAULT_LIFETIME_SECONDS


def test_load_full_config(tmp_path: Path) -> None:
    path = tmp_path / "matprov.toml"
    path.write_text(
        """
[ledger]
path = "chain/events.jsonl"

[certificates]
issuer = "0xauthority"

[materials]
default_lifetime_seconds = 3600

[marketplace]
operator = "0xmarket"

[indexer]
probe_window = 20
batch_size = 50

[service]
submit_timeout = 2
submit_retries = 0
""",
        encoding="utf-8",
    )
    config = load_config(path)
    assert config == MatprovConfig(
        ledger_path="chain/events.jsonl",
        issuer="0xauthority",
        default_lifetime_seconds=3600,
        operator="0xmarket",
        probe_window=20,
        batch_size=50,
        submit_timeout=2.0,
        submit_retries=0,
    )
    assert config.resolve_ledger_path(tmp_path) == tmp_path / "chain" / "events.jsonl"


def test_absolute_ledger_path_is_kept(tmp_path: Path) -> None:
    config = MatprovConfig(ledger_path=str(tmp_path / "elsewhere.jsonl"))
    assert config.resolve_ledger_path(Path("/ignored")) == tmp_path / "elsewhere.jsonl"


def test_partial_config_keeps_defaults() -> None:
    config = parse_config({"indexer": {"probe_window": 5}})
    assert config.probe_window == 5
    assert config.batch_size == MatprovConfig().batch_size
    assert config.issuer == MatprovConfig().issuer


@pytest.mark.parametrize(
    "data",
    [
        {"indexer": {"probe_window": 0}},
        {"indexer": {"batch_size": -1}},
        {"indexer": {"batch_size": "many"}},
        {"materials": {"default_lifetime_seconds": True}},
        {"certificates": {"issuer": "  "}},
        {"service": {"submit_timeout": 0}},
        {"service": {"submit_retries": -1}},
    ],
)
def test_invalid_values_rejected(data: dict) -> None:
    with pytest.raises(ValueError):
        parse_config(data)


def test_invalid_toml_rejected(tmp_path: Path) -> None:
    path = tmp_path / "matprov.toml"
    path.write_text("[indexer\nprobe_window = ", encoding="utf-8")
    with pytest.raises(ValueError, match="Invalid config"):
        load_config(path)
