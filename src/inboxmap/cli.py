"""Command-line interface for inboxmap.

Provides commands for configuration and taxonomy validation, discovery,
provisioning, mapping inspection and the API server.

Usage:
    python -m inboxmap validate-config
    python -m inboxmap validate-taxonomy --business-type banking
    python -m inboxmap discover --provider gmail --user-id me
    python -m inboxmap provision --provider o365 --user-id me --path "SALES/New Leads"
    python -m inboxmap show-mapping --provider gmail --user-id me
    python -m inboxmap serve
"""

from __future__ import annotations

import asyncio
import json
import sys
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click
from rich.console import Console
from rich.table import Table
from rich.tree import Tree

from inboxmap.config import validate_config_file
from inboxmap.core.logging import configure_logging, set_request_id

if TYPE_CHECKING:
    from inboxmap.config_schema import AppConfig
    from inboxmap.db.store import MappingStore
    from inboxmap.engine.service import MailboxService
    from inboxmap.taxonomy.models import CanonicalTaxonomyItem
    from inboxmap.taxonomy.registry import TaxonomyRegistry

console = Console()

PROVIDER_CHOICE = click.Choice(["gmail", "o365"])


@dataclass(frozen=True, slots=True)
class CLIDeps:
    """Shared dependencies initialized by _init_cli_deps()."""

    config: AppConfig
    registry: TaxonomyRegistry
    store: MappingStore
    service: MailboxService


async def _init_cli_deps() -> CLIDeps:
    """Load config and build the service.

    Tokens come from INBOXMAP_GMAIL_TOKEN / INBOXMAP_O365_TOKEN unless a
    command passes --token straight through to the service call.
    Prints an actionable message and exits with status 1 on config errors.
    """
    from inboxmap.auth.credentials import EnvCredentialProvider
    from inboxmap.config import get_config
    from inboxmap.core.errors import ConfigLoadError, ConfigValidationError
    from inboxmap.db.store import MappingStore
    from inboxmap.engine.service import MailboxService
    from inboxmap.engine.suggest import SuggestionEngine
    from inboxmap.providers.factory import create_adapters
    from inboxmap.taxonomy.registry import TaxonomyRegistry

    try:
        config = get_config()
    except (ConfigLoadError, ConfigValidationError) as e:
        console.print(
            f"[red]Config error:[/red] {e}\n\n"
            "Create config/config.yaml from config/config.yaml.example, "
            "or point INBOXMAP_CONFIG_PATH at an existing file."
        )
        sys.exit(1)

    registry = TaxonomyRegistry.builtin()
    store = MappingStore(config.database.path)
    await store.initialize()

    service = MailboxService(
        registry=registry,
        adapters=create_adapters(config),
        store=store,
        credentials=EnvCredentialProvider(),
        engine=SuggestionEngine(registry, config.suggestion.partial_threshold),
    )
    return CLIDeps(config=config, registry=registry, store=store, service=service)


def _run(coro: Any) -> Any:
    """Run a coroutine, turning inboxmap errors into a red message and exit 1."""
    from inboxmap.core.errors import InboxMapError, ValidationError

    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(130)
    except ValidationError as e:
        console.print(f"\n[red]Invalid input:[/red] {e}")
        for detail in e.details:
            console.print(f"  - {detail.get('field')}: {detail.get('message')}")
        sys.exit(1)
    except InboxMapError as e:
        console.print(f"\n[red]Error:[/red] {e}")
        sys.exit(1)


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file (default: $INBOXMAP_CONFIG_PATH or config/config.yaml)",
)
def cli(debug: bool, config_path: Path | None) -> None:
    """inboxmap - mailbox taxonomy discovery, suggestion and provisioning."""
    # Use human-readable output for CLI, JSON for server
    configure_logging(log_level="DEBUG" if debug else "WARNING", json_output=False)
    set_request_id(str(uuid.uuid4()))

    if config_path is not None:
        from inboxmap.config import load_config, set_config
        from inboxmap.core.errors import ConfigLoadError, ConfigValidationError

        try:
            set_config(load_config(config_path))
        except (ConfigLoadError, ConfigValidationError) as e:
            console.print(f"[red]Config error:[/red] {e}")
            sys.exit(1)


@cli.command("validate-config")
@click.argument("path", required=False, type=click.Path(exists=False, path_type=Path))
def validate_config(path: Path | None) -> None:
    """Validate a configuration file against the schema."""
    console.print(f"Validating config: [cyan]{path or 'config/config.yaml'}[/cyan]")

    is_valid, message = validate_config_file(path)

    if is_valid:
        console.print(f"\n[green]✓[/green] {message}")
        sys.exit(0)
    console.print(f"\n[red]✗[/red] {message}")
    sys.exit(1)


def _add_branch(tree: Tree, item: CanonicalTaxonomyItem) -> None:
    branch = tree.add(f"[bold]{item.display_name}[/bold] [dim]{item.key}[/dim] [{item.color}]■[/]")
    for child in item.children:
        _add_branch(branch, child)


@cli.command("validate-taxonomy")
@click.option("--business-type", default=None, help="Print the tree of one business type")
def validate_taxonomy(business_type: str | None) -> None:
    """Validate the built-in canonical taxonomies and summarize them."""
    from inboxmap.core.errors import TaxonomyInvalid
    from inboxmap.taxonomy.registry import TaxonomyRegistry

    try:
        registry = TaxonomyRegistry.builtin()
    except TaxonomyInvalid as e:
        console.print(f"[red]✗[/red] {e}")
        sys.exit(1)

    table = Table(title="Canonical taxonomies")
    table.add_column("Business type", style="cyan")
    table.add_column("Top-level", justify="right")
    table.add_column("Total items", justify="right")
    table.add_column("Max depth", justify="right")
    for name in registry.business_types():
        entries = list(registry.flatten(name).entries())
        table.add_row(
            name,
            str(len(registry.get_taxonomy(name))),
            str(len(entries)),
            str(max(entry.depth for entry in entries)),
        )
    console.print(table)

    if business_type:
        resolved = registry.resolve_business_type(business_type)
        tree = Tree(f"[cyan]{resolved}[/cyan]")
        for item in registry.get_taxonomy(resolved):
            _add_branch(tree, item)
        console.print(tree)

    console.print("\n[green]✓[/green] All taxonomies valid")


@cli.command("discover")
@click.option("--provider", required=True, type=PROVIDER_CHOICE, help="Mail provider")
@click.option("--user-id", required=True, help="Mailbox owner id")
@click.option("--business-type", default="default", help="Canonical taxonomy variant")
@click.option("--token", default=None, help="Provider access token (default: from environment)")
@click.option("--json", "as_json", is_flag=True, help="Print the raw JSON result")
def discover(provider: str, user_id: str, business_type: str, token: str | None, as_json: bool):
    """Discover labels/folders and suggest a mapping onto the taxonomy."""
    result = _run(_discover(provider, user_id, business_type, token))

    if as_json:
        click.echo(json.dumps(result, indent=2))
        return

    existing = result["existing"]
    console.print(
        f"[bold]{provider}[/bold]: {existing['userItems']} user items, "
        f"{existing['systemItems']} system items"
    )

    table = Table(title=f"Suggested mapping ({result['businessType']})")
    table.add_column("Canonical key", style="cyan")
    table.add_column("Action")
    table.add_column("Matched path")
    table.add_column("Confidence", justify="right")
    for key, entry in result["suggestedMapping"].items():
        action = entry["action"]
        table.add_row(
            key,
            f"[green]{action}[/green]" if action == "reuse" else f"[yellow]{action}[/yellow]",
            "/".join(entry["matchedPath"] or []),
            f"{entry['confidence']:.2f}",
        )
    console.print(table)

    analysis = result["analysis"]
    console.print(
        f"\nMatched {analysis['matchedCount']}/{analysis['canonicalCount']} "
        f"(automation score {analysis['automationScore']:.0%}), "
        f"{result['missingCount']} to create"
    )


async def _discover(
    provider: str, user_id: str, business_type: str, token: str | None
) -> dict[str, Any]:
    deps = await _init_cli_deps()
    return await deps.service.discover(user_id, provider, business_type, token)


@cli.command("provision")
@click.option("--provider", required=True, type=PROVIDER_CHOICE, help="Mail provider")
@click.option("--user-id", required=True, help="Mailbox owner id")
@click.option(
    "--path",
    "paths",
    multiple=True,
    help='Slash-separated path to create, e.g. "SALES/New Leads" (repeatable)',
)
@click.option("--color", default=None, help="Hex color applied to every --path item")
@click.option(
    "--business-type",
    default=None,
    help="Provision the whole canonical taxonomy of this business type",
)
@click.option("--token", default=None, help="Provider access token (default: from environment)")
@click.option("--json", "as_json", is_flag=True, help="Print the raw JSON report")
def provision(
    provider: str,
    user_id: str,
    paths: tuple[str, ...],
    color: str | None,
    business_type: str | None,
    token: str | None,
    as_json: bool,
) -> None:
    """Create missing labels/folders (safe to re-run)."""
    if not paths and not business_type:
        console.print("[red]Error:[/red] give at least one --path or a --business-type")
        sys.exit(2)

    items: list[dict[str, Any]] = [
        {"path": [segment for segment in path.split("/") if segment.strip()], "color": color}
        for path in paths
    ]
    report = _run(_provision(provider, user_id, items, business_type, token))

    if as_json:
        click.echo(json.dumps(report, indent=2))
        return

    table = Table(title=f"Provisioning report ({provider})")
    table.add_column("Path")
    table.add_column("Outcome")
    table.add_column("Detail")
    for entry in report["created"]:
        ancestors = len(entry["createdAncestors"])
        detail = f"+{ancestors} parent(s)" if ancestors else ""
        table.add_row("/".join(entry["path"]), "[green]created[/green]", detail)
    for entry in report["skipped"]:
        table.add_row("/".join(entry["path"]), "[dim]skipped[/dim]", entry["reason"])
    for entry in report["failed"]:
        table.add_row("/".join(entry["path"]), "[red]failed[/red]", entry["error"][:80])
    console.print(table)

    summary = report["summary"]
    console.print(
        f"\nCreated {summary['totalCreated']}, skipped {summary['totalSkipped']}, "
        f"failed {summary['totalFailed']} of {summary['totalRequested']}"
    )
    if not report["ok"]:
        sys.exit(1)


async def _provision(
    provider: str,
    user_id: str,
    items: list[dict[str, Any]],
    business_type: str | None,
    token: str | None,
) -> dict[str, Any]:
    deps = await _init_cli_deps()
    if business_type:
        items = items + deps.registry.to_provision_items(business_type)
    return await deps.service.provision(user_id, provider, items, token)


@cli.command("show-mapping")
@click.option("--provider", required=True, type=PROVIDER_CHOICE, help="Mail provider")
@click.option("--user-id", required=True, help="Mailbox owner id")
def show_mapping(provider: str, user_id: str) -> None:
    """Show the saved mapping for a user's mailbox."""
    mapping = _run(_show_mapping(provider, user_id))
    if mapping is None:
        console.print(f"[yellow]No mapping saved for {user_id} on {provider}.[/yellow]")
        sys.exit(1)

    table = Table(title=f"{user_id} / {provider} - version {mapping.version}")
    table.add_column("Canonical key", style="cyan")
    table.add_column("Path")
    table.add_column("Provider id", style="dim")
    table.add_column("Action")
    for key, reference in mapping.mapping.items():
        table.add_row(key, "/".join(reference.path), reference.provider_id or "", reference.action)
    console.print(table)
    console.print(f"Updated {mapping.updated_at.isoformat()}")


async def _show_mapping(provider: str, user_id: str):
    deps = await _init_cli_deps()
    return await deps.service.find_mapping(user_id, provider)


@cli.command("serve")
@click.option(
    "--host",
    default="127.0.0.1",
    help="Host to bind to (default: localhost only)",
)
@click.option(
    "--port",
    default=8000,
    type=int,
    help="Port to bind to",
)
def serve(host: str, port: int) -> None:
    """Start the JSON API server."""
    import uvicorn

    from inboxmap.config import get_config
    from inboxmap.core.errors import ConfigLoadError, ConfigValidationError
    from inboxmap.web.app import create_app

    if host == "0.0.0.0":  # noqa: S104
        console.print(
            "[yellow]Warning:[/yellow] Binding to 0.0.0.0 exposes the server to the network.\n"
            "The API trusts the X-User-Id header; run it behind an authenticating proxy."
        )

    try:
        logging_config = get_config().logging
        configure_logging(log_level=logging_config.level, json_output=logging_config.json_output)
    except ConfigLoadError:
        configure_logging(log_level="INFO", json_output=True)
    except ConfigValidationError as e:
        console.print(f"[red]Config error:[/red] {e}")
        sys.exit(1)

    app = create_app()
    console.print(f"Starting server on [cyan]http://{host}:{port}[/cyan]")
    uvicorn.run(app, host=host, port=port, log_level="info")


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
