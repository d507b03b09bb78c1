"""
Command Line Interface for devtopo.
"""
import asyncio
import os
import signal
import sys
from typing import Awaitable, Callable, List

import click

from ..errors import DevtopoError
from ..MANAGERS.service_orchestrator import ServiceOrchestrator
from ..MODELS.orchestration_config import TopologyConfig
from ..PARSERS.compose_parser import TopologyParser
from ..RUNNERS.dependency_resolver import DependencyResolver
from ..settings import Settings
from ..UTILS.logger import set_level


@click.group()
@click.option('--file', '-f', default='topology.yml', show_default=True, help='Topology file path')
@click.option('--network', default=None, help='Shared network name (overrides the file and DEVTOPO_NETWORK)')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, file, network, verbose):
    """
    devtopo - development topology orchestrator.

    Runs a multi-service topology as containers on one shared network,
    starting services in dependency order and gating them on health checks.
    """
    ctx.ensure_object(dict)
    settings = Settings.from_env()
    set_level("DEBUG" if verbose else settings.log_level)
    ctx.obj['file'] = file
    ctx.obj['network'] = network
    ctx.obj['settings'] = settings


def _load_topology(ctx) -> TopologyConfig:
    return TopologyParser().parse(ctx.obj['file'])


def _make_orchestrator(ctx, topology: TopologyConfig) -> ServiceOrchestrator:
    return ServiceOrchestrator.from_topology(
        topology,
        settings=ctx.obj['settings'],
        network_name=ctx.obj['network'],
        base_dir=os.path.dirname(os.path.abspath(ctx.obj['file'])),
    )


def _run(ctx, action: Callable[[ServiceOrchestrator, TopologyConfig], Awaitable[None]]) -> None:
    """
    Loads the topology and runs ``action`` on a fresh event loop, turning
    devtopo errors into a one-line message and exit code 1.
    """
    try:
        topology = _load_topology(ctx)

        async def runner():
            orchestrator = _make_orchestrator(ctx, topology)
            try:
                await action(orchestrator, topology)
            finally:
                await orchestrator.close()

        asyncio.run(runner())
    except DevtopoError as e:
        raise click.ClickException(str(e)) from e


async def _wait_for_interrupt() -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop.set)
    try:
        await stop.wait()
    finally:
        if sys.platform != "win32":
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)


@cli.command()
@click.option('--detach', '-d', is_flag=True, help='Start services and exit')
@click.option('--no-logs', is_flag=True, help='Do not stream service output in the foreground')
@click.pass_context
def up(ctx, detach, no_logs):
    """Start services defined in the topology file."""
    async def action(orchestrator: ServiceOrchestrator, topology: TopologyConfig):
        # nothing is created when the daemon is unreachable
        await orchestrator.engine.ping()
        try:
            await orchestrator.start_services(topology.services)
        except (DevtopoError, asyncio.CancelledError):
            click.echo("Start failed, tearing down started services...", err=True)
            await orchestrator.stop_all_services()
            raise
        click.echo("Services started.")
        if detach:
            return

        try:
            if not no_logs:
                await orchestrator.stream_all_logs()
            click.echo("Running... Press Ctrl+C to stop.")
            await _wait_for_interrupt()
        finally:
            click.echo("\nStopping services...")
            await orchestrator.stop_all_services()

    _run(ctx, action)


@cli.command()
@click.pass_context
def down(ctx):
    """Stop and remove all services of the topology."""
    async def action(orchestrator: ServiceOrchestrator, topology: TopologyConfig):
        await orchestrator.attach(topology.services)
        await orchestrator.stop_all_services()
        click.echo("Services stopped.")

    _run(ctx, action)


@cli.command()
@click.pass_context
def ps(ctx):
    """List instance status."""
    async def action(orchestrator: ServiceOrchestrator, topology: TopologyConfig):
        await orchestrator.attach(topology.services)
        statuses = await orchestrator.status()
        click.echo(f"{'INSTANCE':20} {'GROUP':15} {'STATE':10} {'CONTAINER':12} PORTS")
        click.echo("-" * 72)
        for status in statuses:
            container = (status.container_id or "")[:12]
            click.echo(f"{status.instance:20} {status.group:15} {status.state:10} {container:12} "
                       f"{', '.join(status.ports)}")

    _run(ctx, action)


@cli.command()
@click.option('--tail', '-n', default=100, show_default=True, help='Number of lines per instance')
@click.argument('groups', nargs=-1)
@click.pass_context
def logs(ctx, tail, groups):
    """Print recent logs of the given service groups (default: all)."""
    async def action(orchestrator: ServiceOrchestrator, topology: TopologyConfig):
        unknown = [g for g in groups if topology.get(g) is None]
        if unknown:
            raise DevtopoError(f"Unknown service group(s): {', '.join(unknown)}")
        await orchestrator.attach(topology.services)
        output = await orchestrator.get_logs(list(groups) or None, tail=tail)
        for instance in orchestrator.instances(list(groups) or None):
            label = instance.label
            for line in output.get(instance.instance_name, []):
                click.echo(f"{label} {line}")

    _run(ctx, action)


@cli.command()
@click.pass_context
def order(ctx):
    """Print the resolved start order."""
    try:
        topology = _load_topology(ctx)
        names: List[str] = DependencyResolver().resolve_order(topology.services)
    except DevtopoError as e:
        raise click.ClickException(str(e)) from e
    for position, name in enumerate(names, 1):
        click.echo(f"{position}. {name}")


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
