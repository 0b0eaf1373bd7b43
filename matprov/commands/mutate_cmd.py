"""Mutation CLI commands (roles, certificates, materials, marketplace)."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

from rich.console import Console

from ..config import MatprovConfig
from ..errors import DomainError, SubmissionTimeout
from ..metadata_store import MetadataStore
from ..service import ProvenanceService


def open_service(data_dir: Path, config: MatprovConfig) -> ProvenanceService:
    return ProvenanceService.open(data_dir, config)


def report_failure(err: Console, e: DomainError | SubmissionTimeout) -> int:
    if isinstance(e, DomainError):
        err.print(f"{e.kind}/{e.reason}: {e.message}", style="bold red", markup=False)
    else:
        err.print(f"SubmissionTimeout: {e}", style="bold red", markup=False)
    return 1


def _run(data_dir: Path, config: MatprovConfig, action: Callable[[ProvenanceService], Any], done: Callable[[Any], str]) -> int:
    console = Console()
    err = Console(stderr=True)
    service = open_service(data_dir, config)
    try:
        ref = action(service)
    except (DomainError, SubmissionTimeout) as e:
        return report_failure(err, e)
    console.print(done(ref), markup=False)
    return 0


def run_register(data_dir: Path, config: MatprovConfig, identity: str, role: str) -> int:
    return _run(
        data_dir, config,
        lambda s: s.register(identity, role),
        lambda ref: f"Registered {identity} as {role} (role token {ref})",
    )


def run_cert_issue(
    data_dir: Path,
    config: MatprovConfig,
    issuer: str,
    holder: str,
    *,
    expires_at: int = 0,
    metadata_ref: str = "",
) -> int:
    return _run(
        data_dir, config,
        lambda s: s.issue_certificate(issuer, holder, expires_at, metadata_ref),
        lambda ref: f"Issued certificate {ref} to {holder}",
    )


def run_cert_revoke(data_dir: Path, config: MatprovConfig, issuer: str, holder: str) -> int:
    return _run(
        data_dir, config,
        lambda s: s.revoke_certificate(issuer, holder),
        lambda ref: f"Revoked certificate {ref} of {holder}",
    )


def _resolve_metadata(data_dir: Path, metadata_ref: str | None, metadata_file: Path | None) -> str:
    if metadata_file is None:
        return metadata_ref or ""
    return MetadataStore(data_dir / "metadata").put_file(metadata_file)


def run_mint(
    data_dir: Path,
    config: MatprovConfig,
    supplier: str,
    *,
    metadata_ref: str | None = None,
    metadata_file: Path | None = None,
    expires_at: int | None = None,
    components: tuple[int, ...] = (),
) -> int:
    ref = _resolve_metadata(data_dir, metadata_ref, metadata_file)
    suffix = f" from {', '.join(f'#{c}' for c in components)}" if components else ""
    return _run(
        data_dir, config,
        lambda s: s.mint(supplier, ref, expires_at, components),
        lambda ref: f"Minted material #{ref}{suffix}",
    )


def run_update_status(data_dir: Path, config: MatprovConfig, caller: str, token_id: int, status: str) -> int:
    return _run(
        data_dir, config,
        lambda s: s.update_status(caller, token_id, status),
        lambda ref: f"Material #{ref} is now {status}",
    )


def run_approve(
    data_dir: Path,
    config: MatprovConfig,
    caller: str,
    token_id: int,
    *,
    operator: str | None = None,
    clear: bool = False,
) -> int:
    target = "" if clear else operator
    shown = "cleared" if clear else f"granted to {operator or config.operator}"
    return _run(
        data_dir, config,
        lambda s: s.approve(caller, token_id, target),
        lambda ref: f"Approval for material #{ref} {shown}",
    )


def run_market_list(
    data_dir: Path,
    config: MatprovConfig,
    seller: str,
    token_id: int,
    price: int,
    *,
    asset_ref: str = "material",
) -> int:
    return _run(
        data_dir, config,
        lambda s: s.list(seller, asset_ref, token_id, price),
        lambda ref: f"Listed {asset_ref} #{token_id} at {price}",
    )


def run_market_cancel(data_dir: Path, config: MatprovConfig, caller: str, token_id: int, *, asset_ref: str = "material") -> int:
    return _run(
        data_dir, config,
        lambda s: s.cancel(caller, asset_ref, token_id),
        lambda ref: f"Cancelled listing for {asset_ref} #{token_id}",
    )


def run_market_buy(
    data_dir: Path,
    config: MatprovConfig,
    buyer: str,
    token_id: int,
    payment: int,
    *,
    asset_ref: str = "material",
) -> int:
    return _run(
        data_dir, config,
        lambda s: s.buy(buyer, asset_ref, token_id, payment),
        lambda ref: f"{buyer} bought {asset_ref} #{token_id} for {payment}",
    )
