"""
kubeverify — CLI entrypoint.

Usage:
    python -m kubeverify.main --help
    kubeverify verify-resource -f deployment.yaml -k cosign.pub
    kubeverify verify-resource configmap/sample -n demo --json
"""

from __future__ import annotations

import click

from kubeverify import __version__
from kubeverify.core.observability.logging_config import resolve_level, setup_logging
from kubeverify.ui.cli.verify import verify_resource_cmd


@click.group()
@click.version_option(version=__version__, prog_name="kubeverify")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, quiet: bool, debug: bool) -> None:
    """kubeverify — check live resources against their signed manifests."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug

    # ── Logging setup (once, at process start) ──────────────────
    setup_logging(
        level=resolve_level(debug=debug, verbose=verbose, quiet=quiet),
        quiet_third_party=not debug,
    )


cli.add_command(verify_resource_cmd)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
