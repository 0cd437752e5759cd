"""Thin CLI wrapper for partflash.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules; the CLI never talks to
a device, it inspects configuration, policy and execution plans.
"""

import json
from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError
from rich.console import Console

from partflash import __version__
from partflash.config import get_settings, print_settings_json
from partflash.logging_config import configure_logging

app = typer.Typer(
    name="partflash",
    help="partflash - plan and orchestrate fastboot partition flashing",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"partflash version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """partflash - plan and orchestrate fastboot partition flashing."""
    configure_logging("DEBUG" if verbose else get_settings().log_level)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        typer.echo(print_settings_json(settings))
        return

    scratch_display = (
        str(settings.scratch_dir) if settings.scratch_dir else "(system default)"
    )
    policy_display = (
        str(settings.policy_file) if settings.policy_file else "(built-in)"
    )
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Scratch directory:   {scratch_display}")
    console.print(f"  Policy file:         {policy_display}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Log level:           {settings.log_level}")
    console.print()
    console.print("[bold]Reconnect (seconds):[/bold]")
    console.print(f"  Timeout:             {settings.reconnect_timeout}")
    console.print(f"  Poll interval:       {settings.reconnect_poll_interval}")


@app.command()
def policy(
    policy_file: Annotated[
        Path | None,
        typer.Option("--file", "-f", help="Policy YAML file (overrides settings)"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show the effective partition policy."""
    from partflash.policy import load_policy

    try:
        effective = load_policy(policy_file or get_settings().policy_file)
    except (OSError, ValueError, ValidationError) as e:
        console.print(f"[red]Invalid policy: {e}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        typer.echo(effective.model_dump_json(indent=2))
        return

    console.print("[bold]Partition Policy:[/bold]")
    console.print(f"  Logical partitions:  {', '.join(effective.logical_partitions)}")
    console.print(
        "  Modem partitions:    "
        f"*{'*, *'.join(effective.modem_patterns)}*, {', '.join(effective.modem_names)}"
    )
    console.print(f"  FRP partitions:      {', '.join(effective.frp_partitions)}")
    console.print(f"  Auto-wipe platforms: {', '.join(effective.auto_wipe_platforms)}")
    console.print(f"  Wipe partitions:     {', '.join(effective.wipe_partitions)}")


def _parse_image_arg(value: str) -> tuple[str, str]:
    name, sep, path = value.partition("=")
    if not sep or not name or not path:
        raise typer.BadParameter(f"Expected PARTITION=PATH, got '{value}'")
    return name, path


@app.command()
def plan(
    images: Annotated[
        list[str],
        typer.Argument(help="Images to flash as PARTITION=PATH"),
    ],
    ab: Annotated[
        bool,
        typer.Option("--ab", help="Flash non-logical partitions to both slots"),
    ] = False,
    slot: Annotated[
        str,
        typer.Option("--slot", "-s", help="Target slot in AB mode (a or b)"),
    ] = "a",
    current_slot: Annotated[
        str | None,
        typer.Option("--current-slot", help="Slot the device boots from"),
    ] = None,
    pure_fbd: Annotated[
        bool,
        typer.Option("--pure-fbd", help="Flash everything in FastbootD"),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show the execution plan for a set of local images.

    Resolves and classifies the images, then prints the ordered writes
    with their target partition and required device mode. Nothing is
    written to any device.
    """
    from partflash.flash.planner import FlashPlanner
    from partflash.flash.progress import format_size
    from partflash.flash.resolver import PartitionSourceResolver, SelectionItem
    from partflash.policy import load_policy
    from partflash.types import FlashOptions, Slot, SourceKind

    try:
        options = FlashOptions(ab_flash_mode=ab, target_slot=slot, pure_fbd_mode=pure_fbd)
        effective_policy = load_policy(get_settings().policy_file)
    except (OSError, ValueError, ValidationError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None

    selection = [
        SelectionItem(name=name, source_kind=SourceKind.LOCAL_FILE, data_ref=path)
        for name, path in (_parse_image_arg(value) for value in images)
    ]
    resolved = PartitionSourceResolver(effective_policy).resolve(selection)
    execution_plan = FlashPlanner().plan(
        resolved.units, options, Slot.parse(current_slot)
    )

    if json_output:
        output = {
            "steps": [
                {
                    "index": step.index,
                    "partition": step.unit.name,
                    "target": step.target_name,
                    "mode": step.required_mode.value,
                    "size_bytes": step.unit.size_bytes,
                    "logical": step.unit.is_logical_partition,
                }
                for step in execution_plan.steps
            ],
            "total_steps": execution_plan.total_steps,
            "total_bytes": execution_plan.total_bytes,
            "dropped": [
                {"name": e.name, "error_code": e.error_code, "message": e.message}
                for e in resolved.errors
            ],
        }
        typer.echo(json.dumps(output, indent=2))
    else:
        for e in resolved.errors:
            console.print(f"[yellow]⚠ {e.message}[/yellow]")
        if not execution_plan.total_steps:
            console.print("[yellow]Nothing to flash[/yellow]")
        else:
            console.print(
                f"[bold]{execution_plan.total_steps} write(s), "
                f"{format_size(execution_plan.total_bytes)}:[/bold]"
            )
            for step in execution_plan.steps:
                console.print(
                    f"  {step.index + 1:>3}. {step.target_name:<24} "
                    f"{step.required_mode.value:<10} {format_size(step.unit.size_bytes)}"
                )

    if resolved.errors:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
