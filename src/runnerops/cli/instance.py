"""runnerops instance - EC2 lifecycle for the runner host."""

from __future__ import annotations

import click

from runnerops.aws import AwsClient
from runnerops.cli.context import CliContext, pass_context
from runnerops.errors import AwsError

instance_id_option = click.option(
    "--instance-id",
    "-i",
    default=None,
    help="EC2 instance id (default: EC2_INSTANCE_ID)",
)


def _resolve(obj: CliContext, instance_id):
    instance_id = instance_id or obj.config.ec2_instance_id
    if not instance_id:
        raise click.UsageError("No instance id: pass --instance-id or set EC2_INSTANCE_ID")
    return AwsClient.from_config(obj.config), instance_id


@click.group()
def instance():
    """Show, start and stop the runner's EC2 instance."""
    pass


@instance.command("status")
@instance_id_option
@pass_context
def instance_status(obj: CliContext, instance_id):
    """Show instance state, type and addresses."""
    aws, instance_id = _resolve(obj, instance_id)
    try:
        info = aws.describe_instance(instance_id)
    except AwsError as e:
        raise click.ClickException(str(e))
    click.echo(f"Instance:   {info.instance_id}")
    click.echo(f"State:      {info.state}")
    click.echo(f"Type:       {info.instance_type or 'unknown'}")
    click.echo(f"Public IP:  {info.public_ip or 'none'}")
    click.echo(f"Private IP: {info.private_ip or 'none'}")


def _transition(obj: CliContext, instance_id, action: str) -> None:
    aws, instance_id = _resolve(obj, instance_id)
    operation = {
        "start": aws.start_instance,
        "stop": aws.stop_instance,
        "terminate": aws.terminate_instance,
    }[action]
    try:
        state = operation(instance_id)
    except AwsError as e:
        raise click.ClickException(str(e))
    click.echo(f"{instance_id}: {state}")


@instance.command("start")
@instance_id_option
@pass_context
def instance_start(obj: CliContext, instance_id):
    """Start a stopped instance."""
    _transition(obj, instance_id, "start")


@instance.command("stop")
@instance_id_option
@click.confirmation_option(prompt="Stop the runner instance?")
@pass_context
def instance_stop(obj: CliContext, instance_id):
    """Stop the instance (the runner goes offline)."""
    _transition(obj, instance_id, "stop")


@instance.command("terminate")
@instance_id_option
@click.confirmation_option(prompt="Terminate the runner instance? This cannot be undone.")
@pass_context
def instance_terminate(obj: CliContext, instance_id):
    """Terminate the instance."""
    _transition(obj, instance_id, "terminate")
