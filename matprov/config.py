"""
Configuration loaded from ``matprov.toml``.

Every setting has a default, so a missing file is a valid configuration.
Example::

    [ledger]
    path = "ledger.jsonl"

    [certificates]
    issuer = "0xauthority"

    [materials]
    default_lifetime_seconds = 15552000

    [marketplace]
    operator = "marketplace"

    [indexer]
    probe_window = 100
    batch_size = 500

    [service]
    submit_timeout = 5.0
    submit_retries = 2
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

CONFIG_FILENAME = "matprov.toml"

DEFAULT_ISSUER = "issuer"
DEFAULT_LIFETIME_SECONDS = 180 * 24 * 60 * 60


@dataclass(frozen=True)
class MatprovConfig:
    ledger_path: str = "ledger.jsonl"
    issuer: str = DEFAULT_ISSUER
    default_lifetime_seconds: int = DEFAULT_LIFETIME_SECONDS
    operator: str = "marketplace"
    probe_window: int = 100
    batch_size: int = 500
    submit_timeout: float | None = 5.0
    submit_retries: int = 2

    def resolve_ledger_path(self, data_dir: Path) -> Path:
        path = Path(self.ledger_path)
        return path if path.is_absolute() else data_dir / path


def _coerce_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _positive_int(section: dict[str, Any], key: str, default: int, *, allow_zero: bool = False) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer, got {value!r}")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValueError(f"{key} must be {'non-negative' if allow_zero else 'positive'}, got {value}")
    return value


def _text(section: dict[str, Any], key: str, default: str) -> str:
    value = section.get(key, default)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{key} must be a non-empty string, got {value!r}")
    return value.strip()


def parse_config(data: dict[str, Any]) -> MatprovConfig:
    """Build a config from parsed TOML, applying defaults for missing keys."""
    defaults = MatprovConfig()
    ledger = _coerce_dict(data.get("ledger"))
    certificates = _coerce_dict(data.get("certificates"))
    materials = _coerce_dict(data.get("materials"))
    marketplace = _coerce_dict(data.get("marketplace"))
    indexer = _coerce_dict(data.get("indexer"))
    service = _coerce_dict(data.get("service"))

    timeout = service.get("submit_timeout", defaults.submit_timeout)
    if timeout is not None:
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ValueError(f"submit_timeout must be a positive number, got {timeout!r}")
        timeout = float(timeout)

    return MatprovConfig(
        ledger_path=_text(ledger, "path", defaults.ledger_path),
        issuer=_text(certificates, "issuer", defaults.issuer),
        default_lifetime_seconds=_positive_int(materials, "default_lifetime_seconds", defaults.default_lifetime_seconds),
        operator=_text(marketplace, "operator", defaults.operator),
        probe_window=_positive_int(indexer, "probe_window", defaults.probe_window),
        batch_size=_positive_int(indexer, "batch_size", defaults.batch_size),
        submit_timeout=timeout,
        submit_retries=_positive_int(service, "submit_retries", defaults.submit_retries, allow_zero=True),
    )


def load_config(path: Path | None) -> MatprovConfig:
    """
    Load configuration from a TOML file.

    Args:
        path: Config file (None or missing file = defaults)

    Raises:
        ValueError: The file is not valid TOML or a value is malformed
    """
    if path is None or not path.exists():
        return MatprovConfig()
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid config {path}: {e}") from e
    return parse_config(data)
