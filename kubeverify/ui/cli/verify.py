"""
CLI command for resource verification.

Thin wrapper over ``kubeverify.core.services.verify_resource``.
Exit status: 0 when every in-scope resource verified, 1 when any did
not, 2 when verification could not run.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import click

from kubeverify.core.config.loader import ConfigError, load_option
from kubeverify.core.models.option import SignerList, VerifyResourceOption
from kubeverify.core.models.result import VerifyResourceResult
from kubeverify.core.services.k8s_common import (
    CommandError,
    describe,
    get_resource,
    load_yaml_all,
)
from kubeverify.core.services.verify_errors import VerifyResourceError
from kubeverify.core.services.verify_resource import verify_resource


def _load_objects(filename: str | None, resource: str | None, namespace: str) -> list[dict[str, Any]]:
    """Objects from a YAML file, or one object fetched from the cluster."""
    if filename:
        text = Path(filename).read_text(encoding="utf-8")
        return [d for d in load_yaml_all(text) if isinstance(d, dict) and "kind" in d]
    if not resource or "/" not in resource:
        raise click.UsageError("Give -f FILE or a resource as KIND/NAME.")
    resource_kind, resource_name = resource.split("/", 1)
    return [get_resource(resource_kind, resource_name, namespace)]


def _build_option(
    config_path: str | None,
    no_defaults: bool,
    overrides: dict[str, Any],
) -> VerifyResourceOption:
    option = load_option(Path(config_path) if config_path else None, use_defaults=not no_defaults)
    # unset flags keep the file's value
    updates = {k: v for k, v in overrides.items() if v is not None and v is not False and v not in ("", ())}
    if "signers" in updates:
        updates["signers"] = SignerList([*option.signers, *updates["signers"]])
    return option.model_copy(update=updates)


def _print_result(obj: dict[str, Any], result: VerifyResourceResult) -> None:
    label = describe(obj)
    if not result.in_scope:
        click.secho(f"   ⏭️  {label}: skipped", fg="white")
        return
    if result.verified:
        click.secho(f"   ✅ {label}: verified", fg="green")
    else:
        click.secho(f"   ❌ {label}: not verified", fg="red")

    click.echo(f"      signer:  {result.signer or '-'}")
    if result.signed_time:
        click.echo(f"      signed:  {result.signed_time.isoformat()}")
    click.echo(f"      sig ref: {result.sig_ref or '-'}")
    if result.diff is not None and result.diff.size() > 0:
        click.echo("      diff:")
        for d in result.diff.items:
            click.echo(f"        {d.key}: {d.before!r} → {d.after!r}")
    for image in result.container_images:
        click.echo(f"      image:   {image.container_name} {image.image}")
    if result.provenances:
        click.echo(f"      provenance records: {len(result.provenances)}")


@click.command("verify-resource")
@click.argument("resource", required=False)
@click.option("-f", "--filename", type=click.Path(exists=True, dir_okay=False), help="YAML file of live objects.")
@click.option("-n", "--namespace", default="", help="Namespace of KIND/NAME.")
@click.option("-c", "--config", "config_path", type=click.Path(exists=True, dir_okay=False), help="Verify option YAML.")
@click.option("--no-defaults", is_flag=True, help="Do not apply the bundled ignore fields.")
@click.option("-i", "--image", "image_ref", default="", help="Image holding the signed manifest.")
@click.option("--signature-resource", "signature_resource_ref", default="", help="ConfigMap (ns/name) holding message and signature.")
@click.option("-k", "--key", "key_path", default="", help="PEM public key.")
@click.option("--signer", "signers", multiple=True, help="Allowed signer (glob, repeatable).")
@click.option("--dry-run-namespace", default="", help="Namespace for dry-run simulation.")
@click.option("--check-dry-run-for-apply", is_flag=True, help="Also simulate an apply.")
@click.option("--provenance", is_flag=True, help="Retrieve provenance records.")
@click.option("--max-manifests", "max_resource_manifest_num", type=int, default=None, help="Candidate manifest cap.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def verify_resource_cmd(
    resource: str | None,
    filename: str | None,
    namespace: str,
    config_path: str | None,
    no_defaults: bool,
    as_json: bool,
    **overrides: Any,
) -> None:
    """Verify live resources against their signed manifests."""
    try:
        option = _build_option(config_path, no_defaults, overrides)
        objects = _load_objects(filename, resource, namespace)
    except (ConfigError, CommandError, OSError, ValueError) as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(2)

    if not objects:
        click.secho("❌ No Kubernetes objects found", fg="yellow", err=True)
        sys.exit(2)

    results: list[tuple[dict[str, Any], VerifyResourceResult]] = []
    for obj in objects:
        try:
            results.append((obj, verify_resource(obj, option)))
        except VerifyResourceError as e:
            click.secho(f"❌ {describe(obj)}: {e}", fg="red", err=True)
            sys.exit(2)

    if as_json:
        payload = [
            {"resource": describe(obj), "result": result.to_dict()}
            for obj, result in results
        ]
        click.echo(json.dumps(payload, indent=2))
    else:
        click.secho("🔏 Resource verification:", fg="cyan", bold=True)
        for obj, result in results:
            _print_result(obj, result)
        click.echo()

    all_ok = all(result.verified for _, result in results if result.in_scope)
    sys.exit(0 if all_ok else 1)
