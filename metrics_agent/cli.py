"""
Command line entry point for the metrics agent.
"""

import sys
from typing import Optional

import click

from metrics_agent import __version__
from metrics_agent.agent import MonitoringAgent, build_runner
from metrics_agent.config import load_config
from metrics_agent.errors import ConfigError, ServiceControlError
from metrics_agent.logger import setup_logging, teardown_logging
from metrics_agent.service import SERVICE_ACTIONS, ServiceManager


def _bootstrap(config_path: Optional[str]):
    """Load configuration and create the logger; exit on failure"""
    try:
        config = load_config(config_path)
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    try:
        logger = setup_logging(
            level=config.logging.level,
            log_file=config.logging.file,
            use_json=config.logging.json
        )
    except OSError as e:
        click.echo(f"Cannot set up logging: {e}", err=True)
        sys.exit(1)

    return config, logger


@click.group(invoke_without_command=True)
@click.option('--config', 'config_path', type=click.Path(exists=True, dir_okay=False),
              envvar='METRICS_AGENT_CONFIG', default=None, help='Path to config.yml')
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx, config_path: Optional[str]):
    """Host metrics agent. Without a command, runs until stopped."""
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path

    if ctx.invoked_subcommand is None:
        ctx.invoke(run)


@cli.command()
@click.pass_context
def run(ctx):
    """Collect and store a snapshot every interval until stopped"""
    config, logger = _bootstrap(ctx.obj['config_path'])

    try:
        agent = MonitoringAgent(build_runner(config, logger), logger, interval=config.interval)
        agent.run()
    finally:
        teardown_logging(logger)


@cli.command()
@click.pass_context
def once(ctx):
    """Collect and store a single snapshot"""
    config, logger = _bootstrap(ctx.obj['config_path'])

    try:
        build_runner(config, logger).run_cycle()
    finally:
        teardown_logging(logger)


@cli.command()
@click.argument('action', type=click.Choice(SERVICE_ACTIONS))
@click.pass_context
def service(ctx, action: str):
    """Control the agent's system service"""
    manager = ServiceManager(config_path=ctx.obj['config_path'])

    try:
        message = manager.control(action)
    except ServiceControlError as e:
        click.echo(click.style(f'❌ {e}', fg='red'), err=True)
        click.echo(f'Valid actions: {", ".join(SERVICE_ACTIONS)}', err=True)
        sys.exit(1)

    click.echo(click.style(f'✓ {message}', fg='green'))


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
