"""
Command line interface for backupper.

    backupper backup perform -t nightly -t weekly
    backupper backup perform --triggers nightly,weekly
    backupper backup triggers
    backupper backup check

`backupper` is a FlaskGroup, so the same commands are available as
`flask --app backupper backup ...`, and `backupper run` serves the run
history API locally. The exit status of `perform` is 0 when
every trigger succeeded, 1 when some only produced warnings and 2 when any
trigger failed.
"""

import click
from flask import current_app
from flask.cli import AppGroup, FlaskGroup

from backupper import create_app
from backupper.backup.coordinator import EXIT_FAILURE, EXIT_SUCCESS, RunCoordinator, parse_trigger_names
from backupper.backup.loader import build_job, load_config_file, unknown_trigger
from backupper.backup.result import Status
from backupper.config import Settings
from backupper.errors import ConfigurationError
from backupper.models import DatabaseHistory

backup_cli = AppGroup('backup', help='Run and inspect backup triggers.')

STATUS_MARKS = {
    Status.SUCCESS: '✓',
    Status.WARNING: '!',
    Status.FAILURE: '✗',
}


@backup_cli.command('perform')
@click.option('-t', '--trigger', '--triggers', 'triggers', multiple=True, required=True,
              help='Trigger to run. Repeat or separate with commas to run several.')
@click.pass_context
def perform(ctx, triggers):
    """Run one or more backup triggers."""
    settings = Settings.from_app_config(current_app.config)
    coordinator = RunCoordinator(settings, history=DatabaseHistory())

    try:
        report = coordinator.run(triggers)
    except ConfigurationError as e:
        click.echo(f"✗ {e}", err=True)
        ctx.exit(EXIT_FAILURE)

    for result in report.results:
        line = f"{STATUS_MARKS[result.status]} {result.trigger}: {result.status.value}"
        if result.stage:
            line += f" (stage: {result.stage})"
        click.echo(line, err=result.status is Status.FAILURE)
        if result.message:
            click.echo(f"  {result.message}", err=result.status is Status.FAILURE)
        for warning in result.warnings:
            click.echo(f"  warning: {warning}")

    ctx.exit(report.exit_status)


@backup_cli.command('triggers')
@click.pass_context
def list_triggers(ctx):
    """List the triggers defined in the triggers file."""
    try:
        definitions = load_config_file(current_app.config.get('BACKUPPER_CONFIG'))
    except ConfigurationError as e:
        click.echo(f"✗ {e}", err=True)
        ctx.exit(EXIT_FAILURE)

    if not definitions:
        click.echo("No triggers defined.")
        return

    for name in sorted(definitions):
        label = definitions[name].get('label')
        click.echo(f"{name}  {label}" if label else name)


@backup_cli.command('check')
@click.option('-t', '--trigger', '--triggers', 'triggers', multiple=True,
              help='Trigger to check (default: all).')
@click.pass_context
def check(ctx, triggers):
    """Validate trigger definitions without running them."""
    try:
        definitions = load_config_file(current_app.config.get('BACKUPPER_CONFIG'))
    except ConfigurationError as e:
        click.echo(f"✗ {e}", err=True)
        ctx.exit(EXIT_FAILURE)

    names = parse_trigger_names(triggers) or sorted(definitions)
    invalid = 0
    for name in names:
        try:
            if name not in definitions:
                raise unknown_trigger(name, definitions)
            job = build_job(name, definitions[name])
        except ConfigurationError as e:
            invalid += 1
            click.echo(f"✗ {e}", err=True)
            continue
        click.echo(
            f"✓ {name}: {len(job.databases)} database(s), {len(job.storages)} storage(s), "
            f"{len(job.notifiers)} notifier(s)"
        )

    ctx.exit(EXIT_FAILURE if invalid else EXIT_SUCCESS)


@click.group(cls=FlaskGroup, create_app=create_app)
def main():
    """Management script for backupper."""
