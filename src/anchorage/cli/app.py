# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/cli/app.py
from __future__ import annotations

import json
from pathlib import Path
from typing import List

import typer
import yaml

from anchorage.config.loader import load_config
from anchorage.config.models import DeploymentConfig
from anchorage.errors import AnchorageError
from anchorage.logging.log import init_logging
from anchorage.observers.console import ConsoleObserver
from anchorage.observers.jsonfile import JsonFileObserver
from anchorage.observers.logger import LoggerObserver
from anchorage.orchestrator import Orchestrator, read_outputs
from anchorage.refresh.cronjob import render_refresh_job


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="anchorage: single-node k3s on EC2 with a Flux GitOps loop")

CONFIG_ARG = typer.Argument(..., help="Deployment definition YAML")


def _fail(err: Exception) -> None:
    typer.secho(f"error: {err}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def _start(config: Path, debug: bool, title: str):
    logger, run_id, log_path = init_logging(verbose=debug)

    typer.echo("")
    typer.secho(title, bold=True)
    typer.echo(f"  Run ID   : {run_id}")
    typer.echo(f"  Logs     : {log_path}")
    typer.echo("")

    cfg: DeploymentConfig = load_config(config)
    observers: List = [
        ConsoleObserver(verbose=debug),
        LoggerObserver(logger),
        JsonFileObserver(log_path.parent / f"{run_id}.jsonl"),
    ]
    return cfg, run_id, observers


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def up(
    config: Path = CONFIG_ARG,
    debug: bool = typer.Option(False, "--debug", help="Debug console logs and helm --debug"),
):
    """Provision the instance, bootstrap k3s and wire up the GitOps pipeline."""
    try:
        cfg, run_id, observers = _start(config, debug, "anchorage up")
        orch = Orchestrator(cfg, observers=observers, run_id=run_id, debug=debug)
        outputs = orch.up()
    except AnchorageError as e:
        _fail(e)

    typer.echo("")
    typer.secho("Deployment complete", bold=True, fg=typer.colors.GREEN)
    for key, value in outputs.to_dict().items():
        if value is not None:
            typer.echo(f"  {key:<17}: {value}")


@app.command()
def plan(
    config: Path = CONFIG_ARG,
    debug: bool = typer.Option(False, "--debug"),
):
    """Show every resource and the order it will be applied in."""
    try:
        cfg = load_config(config)
        init_logging(verbose=debug)
        layers = Orchestrator(cfg).plan()
    except (AnchorageError, ValueError) as e:
        _fail(e)

    step = 1
    for depth, nodes in enumerate(layers):
        typer.secho(f"stage {depth}", bold=True)
        for n in nodes:
            deps = f"  <- {', '.join(n.depends_on)}" if n.depends_on else ""
            typer.echo(f"  {step:>3}. {n.name} [{n.kind}]{deps}")
            step += 1


@app.command()
def down(
    config: Path = CONFIG_ARG,
    delete_repository: bool = typer.Option(False, "--delete-repository", help="Also delete the ECR repository"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Delete everything recorded in the state file, newest first."""
    try:
        cfg, run_id, observers = _start(config, debug, "anchorage down")
        if not yes:
            typer.confirm(f"Destroy deployment '{cfg.name}' ({cfg.environment})?", abort=True)
        results = Orchestrator(cfg, observers=observers, run_id=run_id).down(
            delete_repository=delete_repository,
        )
    except AnchorageError as e:
        _fail(e)

    typer.echo("")
    typer.secho(f"Teardown complete ({len(results)} resources)", bold=True)


@app.command()
def outputs(
    config: Path = CONFIG_ARG,
    show_secrets: bool = typer.Option(False, "--show-secrets", help="Print sensitive output paths"),
    as_json: bool = typer.Option(False, "--json"),
):
    """Print the outputs of the last successful 'up'."""
    try:
        data = read_outputs(load_config(config)).to_dict(show_secrets=show_secrets)
    except AnchorageError as e:
        _fail(e)

    if as_json:
        typer.echo(json.dumps(data, indent=2))
        return
    for key, value in data.items():
        if value is not None:
            typer.echo(f"{key:<17}: {value}")


@app.command("render-refresh-job")
def render_refresh_job_cmd(
    config: Path = CONFIG_ARG,
    registry: str = typer.Option(None, "--registry", help="Registry host, overrides registry.registry"),
):
    """Print the credential refresh job manifests as YAML."""
    try:
        objs = render_refresh_job(load_config(config), registry_host=registry)
    except AnchorageError as e:
        _fail(e)
    typer.echo(yaml.safe_dump_all(objs, sort_keys=False), nl=False)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
