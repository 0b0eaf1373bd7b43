"""Query CLI commands (state lookups, indexed views, metadata, audit log)."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.table import Table

from ..audit_log import FINALIZED, format_audit_entry, read_audit_log
from ..config import MatprovConfig
from ..errors import DomainError
from ..indexer import Confidence, IndexStatus, ListingFilter
from ..metadata_store import MetadataStore
from .mutate_cmd import open_service, report_failure


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=True, default=str))


def _stale_notice(err: Console, status: IndexStatus) -> None:
    if status.stale:
        err.print(
            f"[yellow]Index is stale:[/yellow] indexed through {status.position}, ledger head {status.head}"
        )


# --- Ledger state lookups ---


def run_role_show(data_dir: Path, config: MatprovConfig, identity: str) -> int:
    console = Console()
    err = Console(stderr=True)
    service = open_service(data_dir, config)
    try:
        binding = service.roles.get_binding(identity)
    except DomainError as e:
        return report_failure(err, e)
    console.print(f"{binding.identity}: {binding.role.label} (role token {binding.token_id})", markup=False)
    return 0


def run_cert_check(data_dir: Path, config: MatprovConfig, holder: str, *, output_json: bool = False) -> int:
    console = Console()
    service = open_service(data_dir, config)
    valid = service.is_certificate_valid(holder)
    try:
        cert = service.get_certificate(holder)
    except DomainError:
        cert = None

    if output_json:
        _print_json({"holder": holder, "valid": valid, "certificate": cert.to_dict() if cert else None})
        return 0 if valid else 1

    if cert is None:
        console.print(f"{holder}: no certificate", style="yellow", markup=False)
    else:
        expiry = "never" if cert.expires_at == 0 else str(cert.expires_at)
        state = "valid" if valid else ("revoked" if cert.revoked else "expired")
        console.print(
            f"{holder}: certificate {cert.certificate_id} {state} (expires {expiry})",
            style="green" if valid else "red",
            markup=False,
        )
    return 0 if valid else 1


def run_material_show(data_dir: Path, config: MatprovConfig, token_id: int, *, output_json: bool = False) -> int:
    console = Console()
    err = Console(stderr=True)
    service = open_service(data_dir, config)
    try:
        material = service.get_material(token_id)
        provenance = service.get_provenance(token_id)
    except DomainError as e:
        return report_failure(err, e)

    data = material.to_dict()
    data["provenance"] = provenance
    if service.metadata is not None and material.metadata_ref:
        data["metadata"] = service.metadata.get_json(material.metadata_ref)

    if output_json:
        _print_json(data)
        return 0

    table = Table(title=f"Material #{material.token_id}", show_header=False)
    table.add_column("field", style="cyan")
    table.add_column("value")
    table.add_row("owner", material.owner)
    table.add_row("status", material.status.label)
    table.add_row("expires_at", str(material.expires_at))
    table.add_row("metadata_ref", material.metadata_ref or "-")
    table.add_row("composed_of", ", ".join(f"#{c}" for c in material.composed_of) or "-")
    table.add_row("assembled_into", f"#{material.assembled_into}" if material.assembled_into else "-")
    console.print(table)
    return 0


# --- Indexed views ---


def run_listings(
    data_dir: Path,
    config: MatprovConfig,
    listing_filter: ListingFilter,
    *,
    output_json: bool = False,
) -> int:
    console = Console()
    err = Console(stderr=True)
    service = open_service(data_dir, config)
    listings = service.get_active_listings(listing_filter)
    status = service.index_status()

    if output_json:
        _print_json({"index": status.to_dict(), "listings": [listing.to_dict() for listing in listings]})
        return 0

    _stale_notice(err, status)
    table = Table(title="Active listings")
    table.add_column("token", style="cyan", no_wrap=True)
    table.add_column("name")
    table.add_column("supplier")
    table.add_column("batch")
    table.add_column("status")
    table.add_column("price", justify="right")
    table.add_column("seller", style="dim")
    for listing in listings:
        meta = listing.metadata
        table.add_row(
            f"#{listing.token_id}",
            str(meta.get("name", "")),
            str(meta.get("supplierName", meta.get("supplier", ""))),
            str(meta.get("batchNumber", meta.get("batch", ""))),
            listing.status.label,
            str(listing.price),
            listing.seller,
        )
    console.print(table)
    if not listings:
        console.print("[dim]No active listings match.[/dim]")
    return 0


def run_owned(data_dir: Path, config: MatprovConfig, identity: str, *, output_json: bool = False) -> int:
    console = Console()
    err = Console(stderr=True)
    service = open_service(data_dir, config)
    owned = service.get_ownership_set(identity)
    status = service.index_status()

    if output_json:
        _print_json({"identity": identity, "owned": owned, "index": status.to_dict()})
        return 0

    _stale_notice(err, status)
    if not owned:
        console.print(f"{identity} owns no materials", markup=False)
        return 0
    console.print(f"{identity} owns: {', '.join(f'#{t}' for t in owned)}", markup=False)
    return 0


def run_ids(data_dir: Path, config: MatprovConfig) -> int:
    console = Console()
    service = open_service(data_dir, config)
    ids = service.get_all_known_ids()
    console.print(" ".join(str(t) for t in ids) if ids else "No materials indexed.", markup=False)
    return 0


def run_history(data_dir: Path, config: MatprovConfig, token_id: int, *, output_json: bool = False) -> int:
    console = Console()
    err = Console(stderr=True)
    service = open_service(data_dir, config)
    try:
        entries = service.get_history(token_id)
    except DomainError as e:
        return report_failure(err, e)
    status = service.index_status()

    if output_json:
        _print_json({"token_id": token_id, "index": status.to_dict(), "history": [e.to_dict() for e in entries]})
        return 0

    _stale_notice(err, status)
    table = Table(title=f"History of material #{token_id}")
    table.add_column("pos", justify="right", style="dim")
    table.add_column("event", style="cyan")
    table.add_column("status")
    table.add_column("details")
    table.add_column("confidence")
    approximate = 0
    for entry in entries:
        style = {
            Confidence.EXACT: "green",
            Confidence.INFERRED: "yellow",
            Confidence.APPROXIMATE: "red",
        }[entry.confidence]
        if entry.confidence == Confidence.APPROXIMATE:
            approximate += 1
        details = ", ".join(f"{k}={v}" for k, v in entry.details.items())
        table.add_row(
            str(entry.position),
            entry.kind,
            entry.status.label if entry.status is not None else "",
            details,
            f"[{style}]{entry.confidence.value}[/{style}]",
        )
    console.print(table)
    if approximate:
        err.print(f"[yellow]{approximate} entr{'y' if approximate == 1 else 'ies'} could not be pinned to an exact position.[/yellow]")
    return 0


def run_index_status(data_dir: Path, config: MatprovConfig, *, sync: bool = True) -> int:
    console = Console()
    service = open_service(data_dir, config)
    status = service.sync() if sync else service.index_status()
    label = "[yellow]stale[/yellow]" if status.stale else "[green]current[/green]"
    console.print(f"Index position {status.position} / ledger head {status.head}: {label}")
    return 0


def run_replay(data_dir: Path, config: MatprovConfig, *, times: int = 2) -> int:
    """Rebuild the index from genesis ``times`` times and compare fingerprints."""
    console = Console()
    err = Console(stderr=True)
    service = open_service(data_dir, config)
    fingerprints = []
    for _ in range(max(times, 1)):
        service.indexer.rebuild()
        fingerprints.append(service.indexer.fingerprint())

    status = service.index_status()
    if len(set(fingerprints)) != 1:
        err.print("Replays diverged:", style="bold red")
        for i, fp in enumerate(fingerprints, start=1):
            err.print(f"  replay {i}: {fp}")
        return 1
    console.print(f"{len(fingerprints)} replays through position {status.position}: {fingerprints[0]}")
    return 0


# --- Metadata ---


def run_metadata_put(data_dir: Path, path: Path) -> int:
    console = Console()
    ref = MetadataStore(data_dir / "metadata").put_file(path)
    console.print(ref, markup=False)
    return 0


def run_metadata_get(data_dir: Path, ref: str) -> int:
    err = Console(stderr=True)
    store = MetadataStore(data_dir / "metadata")
    data = store.get(ref)
    if data is None:
        err.print(f"Metadata not found: {ref}", style="bold red", markup=False)
        return 1
    if not store.verify(ref):
        err.print(f"Metadata {ref} does not match its hash", style="bold red", markup=False)
        return 1
    parsed = store.get_json(ref)
    if parsed is not None:
        _print_json(parsed)
    else:
        print(data.decode("utf-8", errors="replace"))
    return 0


# --- Audit log ---


def run_audit(data_dir: Path, *, last_n: int | None = None, output_json: bool = False) -> int:
    console = Console()
    entries = read_audit_log(data_dir, last_n=last_n)
    if output_json:
        _print_json([e.to_dict() for e in entries])
        return 0
    if not entries:
        console.print("[dim]Audit log is empty.[/dim]")
        return 0
    for entry in entries:
        style = "green" if entry.outcome == FINALIZED else "red"
        console.print(format_audit_entry(entry), style=style, markup=False)
    return 0
