"""Cluster commands for the ``aurora-serverless`` CLI.

Each command reads a cluster definition file, builds the template and,
for the deploy/status/delete/list commands, talks to CloudFormation through
``ServerlessStackManager``.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

import boto3
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from aurora_serverless.cfn_template import save_template
from aurora_serverless.engine import KNOWN_ENGINES, ClusterEngine
from aurora_serverless.errors import AuroraServerlessError
from aurora_serverless.stack_manager import MANAGED_BY_TAG, ServerlessStackManager
from aurora_serverless.synth import SynthResult, synthesize
from aurora_serverless.validation import format_validation_error, load_cluster_definition

console = Console()

app = typer.Typer(
    name="aurora-serverless",
    help="Aurora Serverless cluster templates and stacks",
    add_completion=True,
)

DEFAULT_REGION = "us-west-2"


def _default_region() -> str:
    return os.environ.get("AURORA_SERVERLESS_REGION", DEFAULT_REGION)


def _stack_name_for_scope(scope_id: str) -> str:
    """Derive a CloudFormation stack name from the cluster scope id."""
    return f"aurora-serverless-{scope_id.lower()}"


def _status_color(status: str) -> str:
    if "FAILED" in status:
        return "red"
    if "COMPLETE" in status and "ROLLBACK" not in status:
        return "green"
    return "yellow"


def _synthesize(config_path: Path, region: str) -> SynthResult:
    """Load, validate and synthesize ``config_path`` or exit with an error."""
    try:
        definition = load_cluster_definition(config_path)
    except FileNotFoundError:
        console.print(f"[red]✗[/red] Config file not found: {config_path}")
        raise typer.Exit(1)
    except ValidationError as exc:
        console.print(f"[red]✗[/red] Invalid cluster definition: {format_validation_error(exc)}")
        raise typer.Exit(1)

    ec2_client = None
    if definition.vpc.lookup:
        ec2_client = boto3.client("ec2", region_name=region)

    try:
        return synthesize(definition, ec2_client=ec2_client)
    except (AuroraServerlessError, ValueError, RuntimeError) as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise typer.Exit(1)


def _print_build_errors(result: SynthResult) -> None:
    for error in result.build.errors:
        console.print(f"[red]✗[/red] {error}")


@app.callback()
def _root_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    region: Optional[str] = typer.Option(
        None, "--region", help="Default AWS region for all commands"
    ),
):
    """Set global CLI context options."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    if region:
        os.environ["AURORA_SERVERLESS_REGION"] = region


@app.command("synth")
def cluster_synth(
    config: Path = typer.Argument(..., help="Cluster definition file (YAML or JSON)"),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Write the template here instead of stdout"
    ),
    allow_errors: bool = typer.Option(
        False, "--allow-errors", help="Emit the template even if the config has errors"
    ),
    region: Optional[str] = typer.Option(
        None, "--region", "-r", help="AWS region (for VPC lookup)"
    ),
):
    """Build the CloudFormation template for a cluster definition."""
    result = _synthesize(config, region or _default_region())

    if not result.build.ok:
        _print_build_errors(result)
        if not allow_errors:
            raise typer.Exit(1)

    if output is not None:
        path = save_template(result.document, output)
        console.print(f"[green]✓[/green] Template written to [cyan]{path}[/cyan]")
        console.print(
            f"  Resources: {len(result.document.resources)}  "
            f"Rotations: {len(result.rotations)}"
        )
    else:
        typer.echo(result.document.to_json())


@app.command("deploy")
def cluster_deploy(
    config: Path = typer.Argument(..., help="Cluster definition file (YAML or JSON)"),
    stack_name: Optional[str] = typer.Option(
        None, "--stack-name", "-s", help="Stack name (default: aurora-serverless-<scope>)"
    ),
    region: Optional[str] = typer.Option(None, "--region", "-r", help="AWS region"),
    background: bool = typer.Option(
        False, "--background", help="Fire-and-forget: initiate creation and exit"
    ),
):
    """Create a CloudFormation stack for a cluster definition."""
    region = region or _default_region()
    result = _synthesize(config, region)
    if not result.build.ok:
        _print_build_errors(result)
        console.print("[red]✗[/red] Refusing to deploy a cluster with configuration errors.")
        raise typer.Exit(1)

    cluster = result.build.cluster
    name = stack_name or _stack_name_for_scope(cluster.logical_id)

    console.print(f"\n[bold cyan]━━━ Deploy ({cluster.logical_id}) ━━━[/bold cyan]")
    console.print(f"  Stack:     {name}")
    console.print(f"  Region:    {region}")
    console.print(f"  Engine:    {cluster.engine.engine_type} {cluster.engine.engine_version or ''}")
    console.print(f"  Rotations: {len(result.rotations)}")
    console.print()

    try:
        mgr = ServerlessStackManager(region=region)

        if background:
            initiated = mgr.initiate_create_stack(name, result.document)
            console.print(
                f"[green]✓[/green] Stack creation initiated "
                f"(stack: [bold]{initiated['stack_name']}[/bold])."
            )
            console.print(
                f"  Check progress with: [cyan]aurora-serverless status {name}[/cyan]"
            )
            return

        from rich.status import Status

        status_display = Status("Creating...", console=console, spinner="dots")

        def _progress_callback(status: str, elapsed: float) -> None:
            status_display.update(
                f"Creating... ({elapsed:.0f}s elapsed) Status: {status}"
            )

        status_display.start()
        try:
            created = mgr.create_stack(
                name, result.document, cluster=cluster, callback=_progress_callback
            )
        finally:
            status_display.stop()
    except (RuntimeError, AuroraServerlessError) as exc:
        console.print(f"[red]✗[/red] Stack creation failed: {exc}")
        raise typer.Exit(1)

    console.print(f"\n[green]✓[/green] Stack [bold]{name}[/bold] created.")
    console.print(f"  Cluster:  {cluster.cluster_identifier}")
    console.print(f"  Endpoint: [cyan]{cluster.cluster_endpoint.socket_address}[/cyan]")
    console.print(f"  Reader:   [cyan]{cluster.cluster_read_endpoint.socket_address}[/cyan]")
    secret_arn = created["outputs"].get(cluster.output_key("SecretArn"))
    if secret_arn:
        console.print(f"  Secret:   {secret_arn}")


@app.command("status")
def cluster_status(
    stack_name: str = typer.Argument(..., help="CloudFormation stack name"),
    region: Optional[str] = typer.Option(None, "--region", "-r", help="AWS region"),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show stack status and outputs."""
    region = region or _default_region()
    try:
        mgr = ServerlessStackManager(region=region)
        info = mgr.get_stack_status(stack_name)
    except RuntimeError as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise typer.Exit(1)

    if as_json:
        console.print_json(json.dumps(info))
        return

    status = info["status"]
    color = _status_color(status)
    console.print(f"\n[bold cyan]━━━ Status ({stack_name}) ━━━[/bold cyan]")
    console.print(f"  Region: {region}")
    console.print(f"  Status: [{color}]{status}[/{color}]")

    outputs = info.get("outputs", {})
    if outputs:
        console.print("\n  [bold]Outputs:[/bold]")
        for key, val in outputs.items():
            console.print(f"    {key}: [cyan]{val}[/cyan]")


@app.command("delete")
def cluster_delete(
    stack_name: str = typer.Argument(..., help="CloudFormation stack name"),
    region: Optional[str] = typer.Option(None, "--region", "-r", help="AWS region"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation prompt"),
):
    """Delete a cluster stack.

    Resources declared with a Retain or Snapshot policy are kept (or
    snapshotted) by CloudFormation.
    """
    region = region or _default_region()

    if not force:
        from rich.prompt import Confirm

        console.print(
            f"\n[yellow]⚠[/yellow]  This will delete stack [bold]{stack_name}[/bold] "
            f"in [bold]{region}[/bold]."
        )
        if not Confirm.ask("Proceed?", default=False):
            console.print("[dim]Cancelled.[/dim]")
            raise typer.Exit(0)

    try:
        mgr = ServerlessStackManager(region=region)
        result = mgr.delete_stack(stack_name)
    except RuntimeError as exc:
        console.print(f"[red]✗[/red] Stack deletion failed: {exc}")
        raise typer.Exit(1)

    console.print(
        f"[green]✓[/green] Stack [bold]{stack_name}[/bold] deleted "
        f"(status: {result['status']})."
    )


@app.command("list")
def cluster_list(
    region: Optional[str] = typer.Option(None, "--region", "-r", help="AWS region to scan"),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List stacks created by this tool."""
    region = region or _default_region()
    try:
        mgr = ServerlessStackManager(region=region)
        stacks = mgr.detect_existing_resources()
    except RuntimeError as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise typer.Exit(1)

    if as_json:
        console.print_json(json.dumps(stacks, default=str))
        return

    if not stacks:
        console.print(f"[dim]No aurora-serverless stacks found in {region}.[/dim]")
        return

    table = Table(title=f"Aurora Serverless Stacks ({region})")
    table.add_column("Stack", style="cyan")
    table.add_column("Status")
    table.add_column("Endpoint")
    table.add_column("Cost Center", style="dim")

    for name, info in stacks.items():
        status = info.get("status", "")
        color = _status_color(status)
        endpoint = next(
            (
                v
                for k, v in info.get("outputs", {}).items()
                if k.endswith("ClusterEndpointAddress")
            ),
            "-",
        )
        cost = info.get("tags", {}).get("cost-center", "-")
        table.add_row(name, f"[{color}]{status}[/{color}]", endpoint, cost)

    console.print(table)


@app.command("engines")
def cluster_engines():
    """Show supported engines and their rotation applications."""
    table = Table(title="Serverless Engines")
    table.add_column("Engine", style="cyan")
    table.add_column("Rotation applications (single / multi user)")

    for name in KNOWN_ENGINES:
        engine = ClusterEngine.from_name(name)
        table.add_row(
            name,
            f"{engine.single_user_rotation_application.name}\n"
            f"{engine.multi_user_rotation_application.name}",
        )

    console.print(table)
    console.print(f"[dim]Stacks are tagged {MANAGED_BY_TAG}=aurora-serverless.[/dim]")
