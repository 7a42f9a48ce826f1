"""MariaDB database operator CLI (mdbo).

Usage:
    mdbo run                          # Run the operator until SIGTERM/SIGINT
    mdbo reconcile NAMESPACE NAME     # Reconcile one claim once
    mdbo render-job NAMESPACE NAME    # Print a claim's database job as YAML
"""

from __future__ import annotations

import asyncio
import sys

import click
import yaml

from .config import ConfigurationError, OperatorConfig
from .database_job import JobDefinitionError, database_job
from .main import build_reconciler, load_kube_config, main as operator_main, setup_logging
from .models import ClaimKey, MariaDBDatabase, store_connection
from .reconciler import MariaDBDatabaseReconciler
from .resolver import DependencyError, DependencyResolver
from .store import ObjectNotFoundError, ObjectStore, TransientStoreError

VERSION = "0.1.0"


def _load_config() -> OperatorConfig:
    try:
        return OperatorConfig.from_env()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


def _connect(config: OperatorConfig) -> tuple[MariaDBDatabaseReconciler, ObjectStore]:
    """Connect to the cluster and wire the reconciler."""
    load_kube_config()
    return build_reconciler(config)


@click.group()
@click.version_option(version=VERSION, prog_name="mdbo")
def cli() -> None:
    """MariaDB database operator.

    Reconciles MariaDBDatabase claims against Galera or MariaDB instances.
    Configuration is read from environment variables (see OperatorConfig).
    """


@cli.command()
def run() -> None:
    """Run the operator until interrupted."""
    sys.exit(asyncio.run(operator_main()))


@cli.command()
@click.argument("namespace")
@click.argument("name")
def reconcile(namespace: str, name: str) -> None:
    """Reconcile a single claim once and print the result."""
    config = _load_config()
    setup_logging(config)
    reconciler, _ = _connect(config)

    result = reconciler.reconcile(ClaimKey(namespace, name))

    click.echo(f"Claim:    {result.claim}")
    click.echo(f"Phase:    {result.phase.value}")
    if result.requeue_after is not None:
        click.echo(f"Requeue:  {result.requeue_after}s")
    click.echo(f"Duration: {result.duration_seconds:.2f}s")
    if result.error is not None:
        click.secho(f"Error:    {type(result.error).__name__}: {result.error}", fg="red")
        sys.exit(1)
    click.secho("✓ Reconciled", fg="green")


@cli.command("render-job")
@click.argument("namespace")
@click.argument("name")
def render_job(namespace: str, name: str) -> None:
    """Print the database creation Job a claim would run, as YAML."""
    config = _load_config()
    _, store = _connect(config)

    try:
        claim = store.get(MariaDBDatabase, namespace, name)
        resolved = DependencyResolver(store).resolve(claim)
        definition = database_job(claim, store_connection(resolved.store))
    except (ObjectNotFoundError, DependencyError, JobDefinitionError, TransientStoreError) as e:
        raise click.ClickException(str(e)) from e

    manifest = definition.to_manifest(definition.compute_hash())
    click.echo(yaml.safe_dump(manifest, sort_keys=False), nl=False)


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
