"""CLI interface for recipe replay."""

import asyncio
import json

import typer

from .config import settings
from .exceptions import RecipeReplayError
from .observability import setup_structured_logging, stderr_reporter
from .recipes.service import RunReport, list_recipes, recipe_history, run_recipe
from .result import Err

app = typer.Typer(help="Replay recorded web recipes with self-healing")


def _setup_logging() -> None:
    setup_structured_logging(level=settings.logging.level, json_output=settings.logging.json_output)


def _execute(name: str, raw_vars: list[str], *, heal: bool, plan_only: bool, llm_command: str | None) -> RunReport:
    _setup_logging()
    result = asyncio.run(
        run_recipe(
            name,
            raw_vars=raw_vars,
            heal=heal,
            plan_only=plan_only,
            llm_command=llm_command,
            reporter=stderr_reporter,
        )
    )
    if isinstance(result, Err):
        raise result.error.to_exception()
    return result.value


def _emit(name: str, raw_vars: list[str], *, heal: bool, plan_only: bool, as_json: bool, llm_command: str | None) -> None:
    try:
        report = _execute(name, raw_vars, heal=heal, plan_only=plan_only, llm_command=llm_command)
    except RecipeReplayError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from e

    if as_json:
        typer.echo(json.dumps(report.to_dict(), indent=2))
    else:
        typer.echo(f"{report.name} v{report.version}: {'ok' if report.ok else 'failed'} ({report.phase})")
        for key, value in report.resolved_vars.items():
            typer.echo(f"  {key} = {value}")
        for warning in report.warnings:
            typer.secho(f"  warning: {warning}", fg=typer.colors.YELLOW)
        for path in report.downloads:
            typer.echo(f"  downloaded: {path}")
        if report.error:
            typer.secho(f"  error: {report.error}", fg=typer.colors.RED)
    if not report.ok:
        raise typer.Exit(code=1)


@app.command()
def run(
    name: str = typer.Argument(..., help="Recipe name"),
    var: list[str] = typer.Option([], "--var", "-v", help="Variable as key=value (repeatable)"),
    heal: bool = typer.Option(False, "--heal", help="Repair failing steps and save the healed recipe"),
    plan_only: bool = typer.Option(False, "--plan-only", help="Resolve variables without executing"),
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON"),
    llm_command: str = typer.Option(None, "--llm-command", help="Local LLM command (default from config)"),
) -> None:
    """Execute a recipe."""
    _emit(name, var, heal=heal, plan_only=plan_only, as_json=as_json, llm_command=llm_command)


@app.command()
def plan(
    name: str = typer.Argument(..., help="Recipe name"),
    var: list[str] = typer.Option([], "--var", "-v", help="Variable as key=value (repeatable)"),
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON"),
    llm_command: str = typer.Option(None, "--llm-command", help="Local LLM command (default from config)"),
) -> None:
    """Resolve a recipe's variables and show the plan."""
    _emit(name, var, heal=False, plan_only=True, as_json=as_json, llm_command=llm_command)


@app.command("list")
def list_command(as_json: bool = typer.Option(False, "--json", help="Print as JSON")) -> None:
    """List stored recipes."""
    _setup_logging()
    summaries = asyncio.run(list_recipes())
    if as_json:
        typer.echo(json.dumps(summaries, indent=2))
        return
    if not summaries:
        typer.echo(f"No recipes in {settings.get_recipes_dir()}")
        return
    for item in summaries:
        typer.echo(f"{item['name']}  v{item['version']}  {item['steps']} steps  ({item['source']})")


@app.command()
def history(
    name: str = typer.Argument(..., help="Recipe name"),
    as_json: bool = typer.Option(False, "--json", help="Print as JSON"),
) -> None:
    """Show the current and archived versions of a recipe."""
    _setup_logging()
    result = asyncio.run(recipe_history(name))
    if isinstance(result, Err):
        typer.secho(f"Error: {result.error.message}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)

    info = result.value
    if as_json:
        typer.echo(json.dumps(info, indent=2))
        return
    typer.echo(f"{info['name']}  v{info['current']}  ({info['source']})")
    for version in reversed(info["archived"]):
        typer.echo(f"  v{version}  archived")
    if info["notes"]:
        typer.echo(info["notes"])


@app.command()
def config() -> None:
    """Show current configuration."""
    print(f"Recipes: {settings.get_recipes_dir()}")
    print(f"Downloads: {settings.get_downloads_dir()}")
    print(f"Secrets: {settings.get_secrets_dir()}")
    print(f"Headless: {settings.browser.headless}")
    print(f"Heal Headless: {settings.browser.heal_headless}")
    print(f"LLM Command: {settings.llm.command}")
    print(f"HTTP Timeout: {settings.runner.http_timeout}")
    print(f"Log Level: {settings.logging.level}")


if __name__ == "__main__":
    app()
