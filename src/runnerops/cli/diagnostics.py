"""runnerops diagnostics / errors - operator troubleshooting aids."""

from __future__ import annotations

import click

from runnerops.advice import REMEDIATION, format_error_report
from runnerops.classifier import diagnostic_scope_for, is_retryable
from runnerops.cli.context import CliContext, pass_context
from runnerops.diagnostics import DiagnosticScope, DiagnosticsCollector
from runnerops.errors import ErrorKind


@click.command("diagnostics")
@click.option(
    "--scope",
    "-s",
    type=click.Choice([s.value for s in DiagnosticScope]),
    default=DiagnosticScope.ALL.value,
    help="Which facts to collect",
)
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["text", "json"]),
    default="text",
    help="Output format",
)
@pass_context
def diagnostics(obj: CliContext, scope, output_format):
    """Collect a diagnostic snapshot of the host."""
    bundle = DiagnosticsCollector(obj.system, obj.config).collect(scope)
    if output_format == "json":
        click.echo(bundle.model_dump_json(indent=2))
    else:
        click.echo(bundle.render())


class ErrorKindType(click.ParamType):
    """Error kind by name, value or numeric code."""

    name = "error_kind"

    def convert(self, value, param, ctx):
        if isinstance(value, ErrorKind):
            return value
        try:
            return ErrorKind.parse(value)
        except ValueError as e:
            self.fail(str(e), param, ctx)


@click.group()
def errors():
    """Error kinds and their remediation."""
    pass


@errors.command("list")
def errors_list():
    """List error kinds with codes and retry behaviour."""
    click.echo(f"{'CODE':<6}{'KIND':<30}{'RETRY':<7}{'SCOPE':<17}TITLE")
    for kind in ErrorKind:
        remediation = REMEDIATION.get(kind)
        title = remediation.title if remediation else ""
        retry = "yes" if is_retryable(kind) else "no"
        scope = diagnostic_scope_for(kind).value
        click.echo(f"{kind.code:<6}{kind.label:<30}{retry:<7}{scope:<17}{title}")


@errors.command("explain")
@click.argument("kind", type=ErrorKindType())
@click.option("--message", "-m", default="", help="Error message to include in the report")
@click.option("--context", "context_text", default=None, help="Where the error happened")
@click.option(
    "--collect/--no-collect",
    default=False,
    help="Attach a diagnostic bundle scoped to the kind",
)
@pass_context
def errors_explain(obj: CliContext, kind: ErrorKind, message, context_text, collect):
    """Print the operator report for KIND (name, value or code).

    Examples:

        runnerops errors explain PACKAGE_MANAGER_BUSY

        runnerops errors explain 303 --collect
    """
    bundle = None
    if collect:
        bundle = DiagnosticsCollector(obj.system, obj.config).collect(diagnostic_scope_for(kind))
    click.echo(format_error_report(kind, message or kind.label, context=context_text, bundle=bundle))
