#!/usr/bin/env python3

"""Manage the user scripts loaded from your wiki user pages."""

import asyncio
import os
from collections.abc import Awaitable
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from scriptmanager.config import ScriptManagerConfig, load_config
from scriptmanager.engine import ScriptEngine
from scriptmanager.exceptions import ScriptManagerError
from scriptmanager.imports import Import
from scriptmanager.services import DryRunEditService, ServiceRegistry, WikiEditService
from scriptmanager.services.mwclient_service import MWClientEditService, fetch_raw_page
from scriptmanager.summary import DocumentationResolver
from scriptmanager.utils.log import add_file_handler, logger
from scriptmanager.utils.serialize import UNSET

_console = Console(highlight=False)

_HELP_TEXT = """Manage the scripts loaded from your wiki user pages.

Scripts are given as a page title ([bold green]User:Foo/bar.js[/bold green]),
a page on another wiki ([bold green]User:Foo/bar.js --wiki en.wikipedia[/bold green])
or a URL ([bold green]--url https://example.org/tool.js[/bold green]).
"""

_CONFIG_SPEC_HELP_TEXT = """Path to config files, builtin config names, or key-value pairs.

The builtin defaults are always loaded first. Multiple configs will be recursively merged.

Examples:

[bold green]-c my_wiki.yaml -c scriptmanager.user_namespace=Benutzer[/bold green]
"""

app = typer.Typer(rich_markup_mode="rich", add_completion=False, help=_HELP_TEXT)


def build_service(host: str, user_name: str, password: str) -> WikiEditService:
    return MWClientEditService(host, user_name, password)


def build_engine(
    config: ScriptManagerConfig, *, password: str = "", dry_run: bool = False, resolve_docs: bool = True
) -> ScriptEngine:
    primary = build_service(config.server_name, config.user_name, password)
    cross_site = build_service(f"{config.global_wiki_fragment}.org", config.user_name, password)
    if dry_run:
        primary, cross_site = DryRunEditService(primary), DryRunEditService(cross_site)
    resolver = DocumentationResolver(fetch_raw_page, config) if resolve_docs else None
    return ScriptEngine(config, ServiceRegistry(primary, cross_site), resolver=resolver)


def _engine(ctx: typer.Context) -> ScriptEngine:
    return ctx.obj["engine"]


def _run(ctx: typer.Context, operation: Awaitable):
    try:
        result = asyncio.run(operation)
    except ScriptManagerError as e:
        _console.print(f"[red bold]{type(e).__name__}:[/red bold] {escape(str(e))}")
        raise typer.Exit(1) from e
    if ctx.obj.get("dry_run"):
        _print_recorded_edits(_engine(ctx))
    return result


def _print_recorded_edits(engine: ScriptEngine) -> None:
    services = {id(s): s for s in (engine.services.primary, engine.services.cross_site)}.values()
    requests = []
    for service in services:
        requests.extend(service.requests)
        service.requests.clear()
    if not requests:
        _console.print("[dim]Dry run: no edits[/dim]")
    for request in requests:
        mode = "append" if request.appendtext is not None else "replace"
        title, summary = escape(request.title), escape(request.summary)
        _console.print(f"[yellow bold]Dry run[/yellow bold] {mode} [bold]{title}[/bold]: {summary}")
        _console.print(request.appendtext if request.appendtext is not None else request.text, markup=False)


def _make_import(
    ctx: typer.Context, page: str | None, wiki: str | None, url: str | None, target: str | None
) -> Import:
    config: ScriptManagerConfig = ctx.obj["config"]
    target = target or config.default_target
    if target not in config.targets:
        raise typer.BadParameter(f"Unknown target '{target}', expected one of {', '.join(config.targets)}")
    if bool(page) == bool(url):
        raise typer.BadParameter("Give either a page title or --url")
    if url:
        return Import.of_url(url, target)
    if wiki:
        return Import(page=page, wiki=wiki, target=target)
    return Import.of_local(page, target)


def _report(changed: bool, message: str) -> None:
    if changed:
        _console.print(f"[green]{escape(message)}[/green]")
    else:
        _console.print(f"[dim]Nothing to do: {escape(message.lower())}[/dim]")


# fmt: off
_PAGE = typer.Argument(None, help="Script page title, e.g. User:Foo/bar.js")
_WIKI = typer.Option(None, "--wiki", help="Wiki the page lives on, e.g. en.wikipedia", rich_help_panel="Script")
_URL = typer.Option(None, "--url", help="Load the script from a URL instead of a page", rich_help_panel="Script")
_TARGET = typer.Option(None, "-t", "--target", help="Target page (skin name or 'global')", rich_help_panel="Script")


@app.callback()
def main(
    ctx: typer.Context,
    config_spec: list[str] = typer.Option([], "-c", "--config", help=_CONFIG_SPEC_HELP_TEXT, rich_help_panel="Basic"),
    site: str | None = typer.Option(None, "--site", help="Wiki host, e.g. en.wikipedia.org [env: SCRIPTMANAGER_SERVER]", rich_help_panel="Basic"),
    user: str | None = typer.Option(None, "--user", help="User name [env: SCRIPTMANAGER_USER]", rich_help_panel="Basic"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print edits instead of saving them", rich_help_panel="Basic"),
    resolve_docs: bool = typer.Option(True, "--resolve-docs/--no-resolve-docs", help="Look up documentation links in script headers", rich_help_panel="Advanced"),
    log_file: Path | None = typer.Option(None, "--log-file", help="Also write a debug log to this file", rich_help_panel="Advanced"),
) -> None:
    # fmt: on
    if log_file is not None:
        add_file_handler(log_file)
    config = load_config(*config_spec, server_name=site or UNSET, user_name=user or UNSET)
    if not config.server_name or not config.user_name:
        raise typer.BadParameter("Both --site and --user are required (or set them in a config file)")
    logger.debug(f"Managing scripts of {config.user_name} on {config.server_name}")
    engine = build_engine(
        config, password=os.getenv("SCRIPTMANAGER_PASSWORD", ""), dry_run=dry_run, resolve_docs=resolve_docs
    )
    ctx.obj = {"config": config, "engine": engine, "dry_run": dry_run}


@app.command("list")
def list_imports(
    ctx: typer.Context,
    target: list[str] = typer.Option([], "-t", "--target", help="Only list these targets"),
) -> None:
    """List the scripts of every target."""
    engine = _engine(ctx)
    config: ScriptManagerConfig = ctx.obj["config"]

    async def _load():
        loaded = await engine.load_all(target or None)
        captured = {t: await engine.list_captured(t) for t in loaded}
        return loaded, captured

    loaded, captured = _run(ctx, _load())
    table = Table(title=f"Scripts of {config.user_name} on {config.server_name}")
    table.add_column("Target")
    table.add_column("Script")
    table.add_column("Source")
    table.add_column("State")
    for name, imports in loaded.items():
        for imp in imports:
            source = imp.url or imp.source_wiki(config)
            state = "disabled" if imp.disabled else "enabled"
            table.add_row(name, escape(imp.display_name), escape(source), state)
        for item in captured[name]:
            table.add_row(name, escape(item.name), escape(item.key), "captured")
    _console.print(table)


@app.command()
def install(
    ctx: typer.Context,
    page: str | None = _PAGE,
    wiki: str | None = _WIKI,
    url: str | None = _URL,
    target: str | None = _TARGET,
) -> None:
    """Add a script to a target."""
    imp = _make_import(ctx, page, wiki, url, target)
    _report(_run(ctx, _engine(ctx).install(imp)), f"Installed {imp.display_name} on {imp.target}")


@app.command()
def uninstall(
    ctx: typer.Context,
    page: str | None = _PAGE,
    wiki: str | None = _WIKI,
    url: str | None = _URL,
    target: str | None = _TARGET,
) -> None:
    """Remove a script from a target."""
    imp = _make_import(ctx, page, wiki, url, target)
    _report(_run(ctx, _engine(ctx).uninstall(imp)), f"Uninstalled {imp.display_name} from {imp.target}")


@app.command()
def enable(
    ctx: typer.Context,
    page: str | None = _PAGE,
    wiki: str | None = _WIKI,
    url: str | None = _URL,
    target: str | None = _TARGET,
) -> None:
    """Uncomment the lines loading a script."""
    imp = _make_import(ctx, page, wiki, url, target)
    _report(_run(ctx, _engine(ctx).enable(imp)), f"Enabled {imp.display_name} on {imp.target}")


@app.command()
def disable(
    ctx: typer.Context,
    page: str | None = _PAGE,
    wiki: str | None = _WIKI,
    url: str | None = _URL,
    target: str | None = _TARGET,
) -> None:
    """Comment out the lines loading a script."""
    imp = _make_import(ctx, page, wiki, url, target)
    _report(_run(ctx, _engine(ctx).disable(imp)), f"Disabled {imp.display_name} on {imp.target}")


@app.command()
def move(
    ctx: typer.Context,
    page: str | None = _PAGE,
    new_target: str = typer.Option(..., "--to", help="Target to move the script to"),
    wiki: str | None = _WIKI,
    url: str | None = _URL,
    target: str | None = _TARGET,
) -> None:
    """Move a script to another target."""
    imp = _make_import(ctx, page, wiki, url, target)
    if new_target not in ctx.obj["config"].targets:
        raise typer.BadParameter(f"Unknown target '{new_target}'")
    moved = _run(ctx, _engine(ctx).move(imp, new_target))
    _report(moved, f"Moved {imp.display_name} from {imp.target} to {new_target}")


@app.command()
def normalize(
    ctx: typer.Context,
    target: list[str] = typer.Option([], "-t", "--target", help="Targets to normalize (default: all)"),
) -> None:
    """Rewrite every script line into its canonical form."""
    engine = _engine(ctx)
    for name in target or ctx.obj["config"].targets:
        _report(_run(ctx, engine.normalize(name)), f"Normalized {name}")


@app.command()
def capture(
    ctx: typer.Context,
    page: str | None = _PAGE,
    name: str | None = typer.Option(None, "--name", help="Label shown for the captured script"),
    wiki: str | None = _WIKI,
    url: str | None = _URL,
    target: str | None = _TARGET,
) -> None:
    """Move a script into the capture wrapper."""
    imp = _make_import(ctx, page, wiki, url, target)
    _report(_run(ctx, _engine(ctx).capture(imp, name)), f"Captured {imp.display_name} on {imp.target}")


@app.command()
def decapture(
    ctx: typer.Context,
    page: str | None = _PAGE,
    wiki: str | None = _WIKI,
    url: str | None = _URL,
    target: str | None = _TARGET,
) -> None:
    """Release a script from the capture wrapper."""
    imp = _make_import(ctx, page, wiki, url, target)
    released = _run(ctx, _engine(ctx).decapture(imp))
    _report(released, f"Released {imp.display_name} from capture on {imp.target}")


if __name__ == "__main__":
    app()
