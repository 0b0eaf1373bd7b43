"""CLI entrypoint for matprov."""

import logging
import sys
from pathlib import Path

import click

from . import __version__
from .config import CONFIG_FILENAME, MatprovConfig, load_config

DEFAULT_DATA_DIR = Path(".matprov")


def _configure_logging(verbose: bool) -> None:
    from rich.logging import RichHandler

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=verbose, show_path=False)],
        force=True,
    )


def _ctx(ctx: click.Context) -> tuple[Path, MatprovConfig]:
    return ctx.obj["data_dir"], ctx.obj["config"]


@click.group()
@click.version_option(__version__, prog_name="matprov")
@click.option(
    "--data-dir",
    "-d",
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
    default=None,
    envvar="MATPROV_DATA_DIR",
    help="Directory holding the ledger, metadata and audit log (default: ./.matprov)",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help=f"Config file (default: <data-dir>/{CONFIG_FILENAME} if present)",
)
@click.option("--verbose", is_flag=True, help="Log ledger and indexer activity")
@click.pass_context
def cli(ctx: click.Context, data_dir: Path | None, config_path: Path | None, verbose: bool) -> None:
    """matprov - Construction-material provenance and resale ledger.

    Certify suppliers, mint and track materials, trade them on a fixed-price
    marketplace, and query ownership, listings and history views rebuilt
    from the ledger.
    """
    _configure_logging(verbose)
    ctx.ensure_object(dict)

    data_dir = (data_dir or DEFAULT_DATA_DIR).resolve()
    if data_dir.exists() and not data_dir.is_dir():
        raise click.BadParameter(f"'{data_dir}' is not a directory.", param_hint="--data-dir / -d")
    data_dir.mkdir(parents=True, exist_ok=True)

    if config_path is None:
        config_path = data_dir / CONFIG_FILENAME
    elif not config_path.exists():
        raise click.BadParameter(f"File '{config_path}' does not exist.", param_hint="--config")

    try:
        config = load_config(config_path)
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    ctx.obj["data_dir"] = data_dir
    ctx.obj["config"] = config


# --- Roles ---


@cli.group()
def role() -> None:
    """Role registration (Buyer / Supplier, once per identity)."""
    pass


@role.command("register")
@click.argument("identity")
@click.argument("role_name", metavar="ROLE", type=click.Choice(["buyer", "supplier"], case_sensitive=False))
@click.pass_context
def role_register(ctx: click.Context, identity: str, role_name: str) -> None:
    """Bind IDENTITY to ROLE permanently.

    Examples:

        matprov role register 0xabc supplier
    """
    from .commands.mutate_cmd import run_register

    sys.exit(run_register(*_ctx(ctx), identity, role_name.lower()))


@role.command("show")
@click.argument("identity")
@click.pass_context
def role_show(ctx: click.Context, identity: str) -> None:
    """Show the role bound to IDENTITY."""
    from .commands.query_cmd import run_role_show

    sys.exit(run_role_show(*_ctx(ctx), identity))


# --- Certificates ---


@cli.group()
def cert() -> None:
    """Supplier certificates."""
    pass


@cert.command("issue")
@click.argument("holder")
@click.option("--issuer", required=True, help="Issuing identity (must be the configured issuer)")
@click.option("--expires-at", type=int, default=0, show_default=True, help="Expiry (unix seconds, 0 = never)")
@click.option("--metadata-ref", default="", help="Reference to certificate metadata")
@click.pass_context
def cert_issue(ctx: click.Context, holder: str, issuer: str, expires_at: int, metadata_ref: str) -> None:
    """Issue a certificate to HOLDER."""
    from .commands.mutate_cmd import run_cert_issue

    sys.exit(run_cert_issue(*_ctx(ctx), issuer, holder, expires_at=expires_at, metadata_ref=metadata_ref))


@cert.command("revoke")
@click.argument("holder")
@click.option("--issuer", required=True, help="Issuing identity (must be the configured issuer)")
@click.pass_context
def cert_revoke(ctx: click.Context, holder: str, issuer: str) -> None:
    """Revoke HOLDER's certificate (irreversible)."""
    from .commands.mutate_cmd import run_cert_revoke

    sys.exit(run_cert_revoke(*_ctx(ctx), issuer, holder))


@cert.command("check")
@click.argument("holder")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def cert_check(ctx: click.Context, holder: str, output_json: bool) -> None:
    """Check whether HOLDER's certificate is valid (exit 1 if not)."""
    from .commands.query_cmd import run_cert_check

    sys.exit(run_cert_check(*_ctx(ctx), holder, output_json=output_json))


# --- Materials ---


@cli.group()
def material() -> None:
    """Material minting, lifecycle and approvals."""
    pass


@material.command("mint")
@click.option("--supplier", required=True, help="Certified supplier minting the material")
@click.option("--metadata-ref", default=None, help="Existing metadata reference")
@click.option(
    "--metadata-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Metadata JSON file to store and reference",
)
@click.option("--expires-at", type=int, default=None, help="Expiration (unix seconds, default: now + configured lifetime)")
@click.option("--component", "components", type=int, multiple=True, help="Component material id (repeatable)")
@click.pass_context
def material_mint(
    ctx: click.Context,
    supplier: str,
    metadata_ref: str | None,
    metadata_file: Path | None,
    expires_at: int | None,
    components: tuple[int, ...],
) -> None:
    """Mint a new material, optionally assembled from components.

    Examples:

        matprov material mint --supplier 0xabc --metadata-file beam.json

        matprov material mint --supplier 0xabc --component 1 --component 2
    """
    from .commands.mutate_cmd import run_mint

    if metadata_ref and metadata_file:
        raise click.UsageError("Pass either --metadata-ref or --metadata-file, not both.")
    sys.exit(
        run_mint(
            *_ctx(ctx),
            supplier,
            metadata_ref=metadata_ref,
            metadata_file=metadata_file,
            expires_at=expires_at,
            components=components,
        )
    )


@material.command("status")
@click.argument("token_id", type=int)
@click.argument("status")
@click.option("--caller", required=True, help="Current owner")
@click.pass_context
def material_status(ctx: click.Context, token_id: int, status: str, caller: str) -> None:
    """Move TOKEN_ID to STATUS (Available, InTransit, Delivered)."""
    from .commands.mutate_cmd import run_update_status

    sys.exit(run_update_status(*_ctx(ctx), caller, token_id, status))


@material.command("approve")
@click.argument("token_id", type=int)
@click.option("--caller", required=True, help="Current owner")
@click.option("--operator", default=None, help="Operator to approve (default: the marketplace)")
@click.option("--clear", is_flag=True, help="Clear the approval instead")
@click.pass_context
def material_approve(ctx: click.Context, token_id: int, caller: str, operator: str | None, clear: bool) -> None:
    """Authorize an operator to transfer TOKEN_ID."""
    from .commands.mutate_cmd import run_approve

    sys.exit(run_approve(*_ctx(ctx), caller, token_id, operator=operator, clear=clear))


@material.command("show")
@click.argument("token_id", type=int)
@click.option("--json", "output_json", is_flag=True, help="Output as JSON (includes provenance tree)")
@click.pass_context
def material_show(ctx: click.Context, token_id: int, output_json: bool) -> None:
    """Show a material's current state."""
    from .commands.query_cmd import run_material_show

    sys.exit(run_material_show(*_ctx(ctx), token_id, output_json=output_json))


# --- Marketplace ---


@cli.group()
def market() -> None:
    """Fixed-price marketplace."""
    pass


@market.command("list")
@click.argument("token_id", type=int)
@click.option("--seller", required=True, help="Owner listing the material")
@click.option("--price", type=int, required=True, help="Price in the smallest currency unit")
@click.option("--asset", "asset_ref", default="material", show_default=True, help="Asset collection")
@click.pass_context
def market_list(ctx: click.Context, token_id: int, seller: str, price: int, asset_ref: str) -> None:
    """List TOKEN_ID for sale."""
    from .commands.mutate_cmd import run_market_list

    sys.exit(run_market_list(*_ctx(ctx), seller, token_id, price, asset_ref=asset_ref))


@market.command("cancel")
@click.argument("token_id", type=int)
@click.option("--caller", required=True, help="Seller of the listing")
@click.option("--asset", "asset_ref", default="material", show_default=True, help="Asset collection")
@click.pass_context
def market_cancel(ctx: click.Context, token_id: int, caller: str, asset_ref: str) -> None:
    """Cancel the listing for TOKEN_ID."""
    from .commands.mutate_cmd import run_market_cancel

    sys.exit(run_market_cancel(*_ctx(ctx), caller, token_id, asset_ref=asset_ref))


@market.command("buy")
@click.argument("token_id", type=int)
@click.option("--buyer", required=True, help="Purchasing identity")
@click.option("--payment", type=int, required=True, help="Payment (must equal the price)")
@click.option("--asset", "asset_ref", default="material", show_default=True, help="Asset collection")
@click.pass_context
def market_buy(ctx: click.Context, token_id: int, buyer: str, payment: int, asset_ref: str) -> None:
    """Buy the listed TOKEN_ID."""
    from .commands.mutate_cmd import run_market_buy

    sys.exit(run_market_buy(*_ctx(ctx), buyer, token_id, payment, asset_ref=asset_ref))


@market.command("listings")
@click.option("--name", default="", help="Substring of the material name")
@click.option("--supplier", default="", help="Substring of the supplier name")
@click.option("--batch", default="", help="Substring of the batch number")
@click.option("--description", default="", help="Substring of the description")
@click.option("--status", default="", help="Substring of the status label")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def market_listings(
    ctx: click.Context,
    name: str,
    supplier: str,
    batch: str,
    description: str,
    status: str,
    output_json: bool,
) -> None:
    """Show active listings (filters are case-insensitive and combined)."""
    from .commands.query_cmd import run_listings
    from .indexer import ListingFilter

    listing_filter = ListingFilter(name=name, supplier=supplier, batch=batch, description=description, status=status)
    sys.exit(run_listings(*_ctx(ctx), listing_filter, output_json=output_json))


# --- Indexed views ---


@cli.group()
def view() -> None:
    """Views rebuilt from the ledger event stream."""
    pass


@view.command("owned")
@click.argument("identity")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def view_owned(ctx: click.Context, identity: str, output_json: bool) -> None:
    """Materials currently owned by IDENTITY."""
    from .commands.query_cmd import run_owned

    sys.exit(run_owned(*_ctx(ctx), identity, output_json=output_json))


@view.command("ids")
@click.pass_context
def view_ids(ctx: click.Context) -> None:
    """Every material id ever minted."""
    from .commands.query_cmd import run_ids

    sys.exit(run_ids(*_ctx(ctx)))


@view.command("history")
@click.argument("token_id", type=int)
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def view_history(ctx: click.Context, token_id: int, output_json: bool) -> None:
    """History of TOKEN_ID with confidence flags."""
    from .commands.query_cmd import run_history

    sys.exit(run_history(*_ctx(ctx), token_id, output_json=output_json))


@view.command("status")
@click.option("--no-sync", is_flag=True, help="Report without syncing first")
@click.pass_context
def view_status(ctx: click.Context, no_sync: bool) -> None:
    """Index position versus ledger head."""
    from .commands.query_cmd import run_index_status

    sys.exit(run_index_status(*_ctx(ctx), sync=not no_sync))


@view.command("replay")
@click.option("--times", type=int, default=2, show_default=True, help="Number of full replays")
@click.pass_context
def view_replay(ctx: click.Context, times: int) -> None:
    """Replay the ledger from genesis and compare view fingerprints."""
    from .commands.query_cmd import run_replay

    sys.exit(run_replay(*_ctx(ctx), times=times))


# --- Metadata ---


@cli.group()
def metadata() -> None:
    """Content-addressed display metadata."""
    pass


@metadata.command("put")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def metadata_put(ctx: click.Context, path: Path) -> None:
    """Store PATH and print its reference."""
    from .commands.query_cmd import run_metadata_put

    sys.exit(run_metadata_put(ctx.obj["data_dir"], path))


@metadata.command("get")
@click.argument("ref")
@click.pass_context
def metadata_get(ctx: click.Context, ref: str) -> None:
    """Print the metadata stored under REF."""
    from .commands.query_cmd import run_metadata_get

    sys.exit(run_metadata_get(ctx.obj["data_dir"], ref))


# --- Operations ---


@cli.command()
@click.pass_context
def watch(ctx: click.Context) -> None:
    """Keep the index in sync while the ledger changes (Ctrl+C to stop)."""
    from .commands.watch_cmd import run_watch

    sys.exit(run_watch(*_ctx(ctx)))


@cli.command()
@click.option("--last", "last_n", type=int, default=None, help="Only the last N entries")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def audit(ctx: click.Context, last_n: int | None, output_json: bool) -> None:
    """Show the mutation audit log (finalized and reverted)."""
    from .commands.query_cmd import run_audit

    sys.exit(run_audit(ctx.obj["data_dir"], last_n=last_n, output_json=output_json))


if __name__ == "__main__":
    cli()
