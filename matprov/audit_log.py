"""
Audit log of mutation outcomes.

Every submitted mutation leaves one line here, whether the ledger finalized
it or a domain rule reverted it. The ledger only records what happened; the
audit log also records what was attempted and why it was refused.

Format: JSON Lines at ``<data_dir>/audit.log``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

AUDIT_FILENAME = "audit.log"

FINALIZED = "finalized"
REVERTED = "reverted"
TIMED_OUT = "timed_out"


@dataclass
class MutationAuditEntry:
    """A single audit log entry."""

    timestamp: str
    operation: str
    actor: str
    outcome: str  # finalized, reverted or timed_out
    ref: Any = None
    kind: str | None = None
    reason: str | None = None
    message: str | None = None
    positions: list[int] = field(default_factory=list)
    arguments: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "timestamp": self.timestamp,
            "operation": self.operation,
            "actor": self.actor,
            "outcome": self.outcome,
        }
        if self.outcome == FINALIZED:
            result["ref"] = self.ref
            result["positions"] = self.positions
        else:
            result["kind"] = self.kind
            result["reason"] = self.reason
            result["message"] = self.message
        if self.arguments:
            result["arguments"] = self.arguments
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MutationAuditEntry:
        return cls(
            timestamp=data["timestamp"],
            operation=data["operation"],
            actor=data.get("actor", ""),
            outcome=data.get("outcome", FINALIZED),
            ref=data.get("ref"),
            kind=data.get("kind"),
            reason=data.get("reason"),
            message=data.get("message"),
            positions=list(data.get("positions", [])),
            arguments=data.get("arguments", {}),
        )


def get_audit_log_path(data_dir: Path) -> Path:
    return data_dir / AUDIT_FILENAME


def log_mutation(
    data_dir: Path,
    operation: str,
    actor: str,
    outcome: str,
    *,
    ref: Any = None,
    kind: str | None = None,
    reason: str | None = None,
    message: str | None = None,
    positions: list[int] | None = None,
    arguments: dict[str, Any] | None = None,
) -> MutationAuditEntry:
    """
    Append one mutation outcome to the audit log.

    Args:
        data_dir: Data directory holding audit.log
        operation: Operation name (e.g. "market.buy")
        actor: Submitting identity
        outcome: FINALIZED, REVERTED or TIMED_OUT
        ref: Derived identifier of a finalized mutation
        kind: Failure taxonomy of a rejected mutation
        reason: Failure reason code
        message: Failure message
        positions: Ledger positions of the finalized events
        arguments: Operation inputs

    Returns:
        The written entry
    """
    entry = MutationAuditEntry(
        timestamp=datetime.now(timezone.utc).isoformat(),
        operation=operation,
        actor=actor,
        outcome=outcome,
        ref=ref,
        kind=kind,
        reason=reason,
        message=message,
        positions=positions or [],
        arguments=arguments or {},
    )

    log_path = get_audit_log_path(data_dir)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with log_path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(entry.to_dict(), default=str) + "\n")

    return entry


def read_audit_log(data_dir: Path, last_n: int | None = None) -> list[MutationAuditEntry]:
    """
    Read entries from the audit log.

    Args:
        data_dir: Data directory holding audit.log
        last_n: If specified, return only the last N entries

    Returns:
        Entries, oldest first
    """
    log_path = get_audit_log_path(data_dir)
    if not log_path.exists():
        return []

    entries = []
    with log_path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                try:
                    entries.append(MutationAuditEntry.from_dict(json.loads(line)))
                except (json.JSONDecodeError, KeyError):
                    continue  # Skip malformed lines

    if last_n is not None:
        return entries[-last_n:] if last_n > 0 else []
    return entries


def format_audit_entry(entry: MutationAuditEntry) -> str:
    """Format an audit entry for human-readable display."""
    lines = [f"[{entry.timestamp}] {entry.operation} by {entry.actor}: {entry.outcome}"]
    if entry.outcome == FINALIZED:
        lines.append(f"  ref: {entry.ref}")
        if entry.positions:
            lines.append(f"  positions: {', '.join(str(p) for p in entry.positions)}")
    else:
        lines.append(f"  {entry.kind}/{entry.reason}: {entry.message}")
    for key, value in entry.arguments.items():
        lines.append(f"  {key}: {value}")
    return "\n".join(lines)
