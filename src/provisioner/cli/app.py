"""Main CLI application for provisioner."""

import asyncio
from collections.abc import Callable
from typing import Annotated, Any

import typer

from provisioner.cli.commands.apply import run_apply, run_plan
from provisioner.cli.commands.status import run_reset, run_status
from provisioner.cli.commands.verify import run_verify
from provisioner.config.loader import get_env_overrides, merge_overrides, split_assignments
from provisioner.config.models import ConfigOverrides
from provisioner.config.presets import get_available_presets
from provisioner.core.errors import ConfigError
from provisioner.core.logging import setup_logging

EXIT_STEP_FAILURE = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130

app = typer.Typer(
    name="provision",
    help="Declarative, resumable host provisioning",
    no_args_is_help=True,
)

PlanArg = Annotated[str, typer.Argument(help="Path to plan file (default: ./provision.yaml)")]
PresetOpt = Annotated[
    str,
    typer.Option("--preset", "-p", help="Built-in plan preset (control-plane, host-prep)"),
]
SetOpt = Annotated[
    list[str] | None,
    typer.Option("--set", "-s", help="Override a plan value, e.g. components.containerd.version=2.0.1"),
]
StateFileOpt = Annotated[str, typer.Option("--state-file", help="Path to the state file")]
JsonOpt = Annotated[bool, typer.Option("--json", help="Emit JSON lines instead of text")]


@app.callback()
def main(
    ctx: typer.Context,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging")] = False,
    trace: Annotated[
        bool, typer.Option("--trace", help="Print every command with its output")
    ] = False,
) -> None:
    """provision - idempotent, verifiable, resumable host provisioning."""
    setup_logging(verbose=verbose, trace=trace)
    ctx.obj = {"trace": trace}


def _overrides(values: list[str] | None, state_file: str) -> ConfigOverrides:
    """Merge CLI flags with PROVISION_* environment variables."""
    # "--set a=1,b=2" works like repeated flags; commas inside a value are kept
    split_values = [v for item in values or [] for v in split_assignments(item)]
    cli = ConfigOverrides(state_file=state_file, values=split_values)
    return merge_overrides(cli, get_env_overrides())


def _check_preset(preset: str) -> None:
    if preset and preset not in get_available_presets():
        typer.echo(
            f"Error: Unknown preset '{preset}'. "
            f"Available presets: {', '.join(get_available_presets())}",
            err=True,
        )
        raise typer.Exit(code=EXIT_CONFIG_ERROR)


def _guarded(call: Callable[[], Any]) -> Any:
    """Run a command body, mapping failures onto exit codes."""
    try:
        return call()
    except ConfigError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=EXIT_CONFIG_ERROR) from e
    except PermissionError as e:
        typer.echo(f"Error: {e}. This command requires root privileges; run with sudo.", err=True)
        raise typer.Exit(code=EXIT_STEP_FAILURE) from e
    except KeyboardInterrupt as e:
        typer.echo("Interrupted; completed steps are kept and the next run resumes.", err=True)
        raise typer.Exit(code=EXIT_INTERRUPTED) from e


@app.command()
def apply(
    ctx: typer.Context,
    plan: PlanArg = "",
    preset: PresetOpt = "",
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Allow changes to the host")] = False,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="Show what would run without changing anything")
    ] = False,
    parallel: Annotated[
        bool,
        typer.Option("--parallel", help="Run steps with disjoint resource tags concurrently"),
    ] = False,
    set_values: SetOpt = None,
    state_file: StateFileOpt = "",
    json_output: JsonOpt = False,
) -> None:
    """Bring the host to the state described by a plan."""
    _check_preset(preset)
    overrides = _guarded(lambda: _overrides(set_values, state_file))

    code = _guarded(
        lambda: asyncio.run(
            run_apply(
                plan,
                preset,
                overrides,
                yes=yes,
                dry_run=dry_run,
                parallel=parallel,
                json_output=json_output,
                trace=ctx.obj["trace"],
            )
        )
    )
    raise typer.Exit(code=code)


@app.command()
def status(
    plan: PlanArg = "",
    preset: PresetOpt = "",
    set_values: SetOpt = None,
    state_file: StateFileOpt = "",
    json_output: JsonOpt = False,
) -> None:
    """Show recorded step results (and pending steps when a plan is given)."""
    _check_preset(preset)
    overrides = _guarded(lambda: _overrides(set_values, state_file))
    _guarded(lambda: run_status(plan, preset, overrides, json_output=json_output))


@app.command()
def verify(
    plan: PlanArg = "",
    preset: PresetOpt = "",
    set_values: SetOpt = None,
    json_output: JsonOpt = False,
) -> None:
    """Run every verification probe without changing anything."""
    _check_preset(preset)
    overrides = _guarded(lambda: _overrides(set_values, ""))
    code = _guarded(
        lambda: asyncio.run(run_verify(plan, preset, overrides, json_output=json_output))
    )
    raise typer.Exit(code=code)


@app.command("plan")
def show_plan(
    plan: PlanArg = "",
    preset: PresetOpt = "",
    set_values: SetOpt = None,
) -> None:
    """Print the resolved execution order."""
    _check_preset(preset)
    overrides = _guarded(lambda: _overrides(set_values, ""))
    for position, step_id in enumerate(_guarded(lambda: run_plan(plan, preset, overrides)), 1):
        typer.echo(f"{position:>3}. {step_id}")


@app.command()
def reset(
    state_file: StateFileOpt = "",
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Confirm forgetting all results")] = False,
) -> None:
    """Forget recorded results so the next apply re-runs every step."""
    if not yes:
        typer.echo("Error: reset forgets all recorded results; pass --yes to confirm.", err=True)
        raise typer.Exit(code=EXIT_CONFIG_ERROR)
    path = _guarded(lambda: run_reset(state_file or get_env_overrides().state_file))
    typer.echo(f"Cleared {path}")


if __name__ == "__main__":
    app()
