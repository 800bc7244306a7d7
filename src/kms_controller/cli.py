"""KMS key controller CLI (kmsctl).

A local reference harness for running handlers by hand. It is not the real
harness: it keeps no state of its own, and --follow simply sleeps for each
advised delay before re-invoking with the returned context.

Usage:
    kmsctl invoke request.yaml --type key --action create --follow
    kmsctl invoke request.json --type replica-key --action read
    kmsctl invoke alias.yaml --type alias --action update
    kmsctl config
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any

import click
import yaml

from .config import Config, ConfigurationError
from .main import invoke as invoke_handler
from .main import setup_logging

# CLI name -> resource type
RESOURCE_TYPES = {
    "alias": "AWS::KMS::Alias",
    "key": "AWS::KMS::Key",
    "replica-key": "AWS::KMS::ReplicaKey",
}
ACTIONS = ("create", "read", "update", "delete", "list")

# Upper bound for --follow, enough for a full stabilization at the default poll interval
DEFAULT_MAX_INVOCATIONS = 200


def load_request(path: Path) -> dict[str, Any]:
    """Load a request document (JSON is valid YAML, so one parser covers both)."""
    try:
        document = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise click.ClickException(f"Cannot parse {path}: {e}") from e
    if document is None:
        return {}
    if not isinstance(document, dict):
        raise click.ClickException(f"{path} must contain a mapping")
    return document


def next_request(request: dict[str, Any], outcome: dict[str, Any]) -> dict[str, Any]:
    """Request for the re-invocation after an IN_PROGRESS outcome."""
    follow_up = dict(request)
    follow_up["callbackContext"] = outcome.get("callbackContext")
    if outcome.get("resourceModel") is not None:
        follow_up["desiredResourceState"] = outcome["resourceModel"]
    return follow_up


@click.group()
@click.version_option(version="0.1.0", prog_name="kmsctl")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def cli(verbose: bool) -> None:
    """KMS key controller - run reconciliation handlers locally."""
    setup_logging(logging.DEBUG if verbose else logging.WARNING)


@cli.command()
@click.argument("request_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--type",
    "resource_type",
    type=click.Choice(sorted(RESOURCE_TYPES)),
    default="key",
    show_default=True,
    help="Resource variant",
)
@click.option("--action", "-a", type=click.Choice(ACTIONS), required=True, help="Operation")
@click.option("--follow", "-f", is_flag=True, help="Re-invoke until a terminal outcome")
@click.option(
    "--max-invocations",
    default=DEFAULT_MAX_INVOCATIONS,
    show_default=True,
    help="Give up following after this many invocations",
)
def invoke(
    request_file: Path,
    resource_type: str,
    action: str,
    follow: bool,
    max_invocations: int,
) -> None:
    """Run a handler on REQUEST_FILE and print the outcome."""
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    request = load_request(request_file)
    invocations = 0
    while True:
        try:
            outcome = invoke_handler(RESOURCE_TYPES[resource_type], action, request, config)
        except ValueError as e:
            raise click.ClickException(f"Invalid request document: {e}") from e
        invocations += 1
        click.echo(json.dumps(outcome, indent=2))

        if not follow or outcome["status"] != "IN_PROGRESS":
            break
        if invocations >= max_invocations:
            raise click.ClickException(f"Still in progress after {invocations} invocations")

        delay = outcome.get("callbackDelaySeconds", 0)
        click.secho(f"In progress, re-invoking in {delay}s", fg="yellow", err=True)
        time.sleep(delay)
        request = next_request(request, outcome)

    if outcome["status"] == "FAILED":
        click.secho(f"{outcome.get('errorCode')}: {outcome.get('message')}", fg="red", err=True)
        raise SystemExit(1)


@cli.command("config")
def show_config() -> None:
    """Print the effective configuration."""
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e
    click.echo(json.dumps(config.to_dict(), indent=2))


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
