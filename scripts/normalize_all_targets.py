#!/usr/bin/env python3
"""Normalize the script lines of every target page of a user.

Usage: normalize_all_targets.py <site> <user> [config spec ...]

The password is read from SCRIPTMANAGER_PASSWORD. Set SCRIPTMANAGER_DRY_RUN=1
to print the edits instead of saving them.
"""

import asyncio
import os
import sys

from rich.console import Console

from scriptmanager.config import load_config
from scriptmanager.exceptions import ScriptManagerError
from scriptmanager.run.cli import build_engine
from scriptmanager.utils.log import logger

console = Console(highlight=False)


async def normalize_all(engine, targets: list[str]) -> dict[str, str]:
    results = {}
    for target in targets:
        try:
            results[target] = "normalized" if await engine.normalize(target) else "unchanged"
        except ScriptManagerError as e:
            logger.error(f"Failed to normalize {target}: {e}")
            results[target] = "error"
    return results


def main():
    if len(sys.argv) < 3:
        console.print(__doc__)
        sys.exit(2)
    site, user, *config_specs = sys.argv[1:]
    config = load_config(*config_specs, server_name=site, user_name=user)
    dry_run = os.getenv("SCRIPTMANAGER_DRY_RUN", "").lower() in ("1", "true")
    engine = build_engine(config, password=os.getenv("SCRIPTMANAGER_PASSWORD", ""), dry_run=dry_run)

    console.print(f"[bold]Normalizing {len(config.targets)} targets of {user} on {site}[/bold]\n")
    results = asyncio.run(normalize_all(engine, config.targets))

    colors = {"normalized": "green", "unchanged": "dim", "error": "red"}
    for target, status in results.items():
        console.print(f"  {target:<12} [{colors[status]}]{status}[/{colors[status]}]")
    if dry_run:
        for service in {id(s): s for s in (engine.services.primary, engine.services.cross_site)}.values():
            for request in service.requests:
                console.print(f"\n[yellow bold]{request.title}[/yellow bold]")
                console.print(request.text if request.text is not None else request.appendtext, markup=False)
    if "error" in results.values():
        sys.exit(1)


if __name__ == "__main__":
    main()
