"""
CLI for change-driven stack deployments.
Thin wrapper over Orchestrator.
"""
import asyncio
import logging
import re
import signal
from typing import List, Optional, Tuple

import click

from ..config.global_config_loader import GlobalConfig, load_global_config
from ..core.errors import ConfigurationError, StackDeployError
from ..core.models import DeploymentReport, TriggerRequest
from ..deployment.history import DeploymentHistory
from ..deployment.orchestrator import Orchestrator
from ..runtime.compose import ComposeRuntime


def setup_logging(global_cfg: GlobalConfig, log_level: Optional[str] = None):
    """Set up logging configuration."""
    level_name = (log_level or global_cfg.logging.level).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=global_cfg.logging.format
    )


def parse_services(services: Optional[str], service: Tuple[str, ...]) -> List[str]:
    """Accept 'a b', 'a,b' and repeated --service flags"""
    names: List[str] = []
    for chunk in ([services] if services else []) + list(service):
        for name in re.split(r'[\s,]+', chunk):
            if name and name not in names:
                names.append(name)
    return names


def _load_config(global_config: Optional[str]) -> GlobalConfig:
    try:
        return load_global_config(global_config)
    except StackDeployError as e:
        raise click.ClickException(str(e))


def _install_cancel_handlers(cancel_event: asyncio.Event) -> None:
    """SIGINT/SIGTERM stop the deployment between per-service steps"""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel_event.set)
        except (NotImplementedError, RuntimeError, ValueError):
            # Not available off the main thread or on this platform
            pass


async def _run_orchestrator(global_cfg: GlobalConfig, trigger: TriggerRequest) -> DeploymentReport:
    orchestrator = Orchestrator.from_global_config(global_cfg)
    cancel_event = asyncio.Event()
    _install_cancel_handlers(cancel_event)
    return await orchestrator.run(trigger, cancel_event=cancel_event)


@click.group()
def cli():
    """Change-driven selective deployment for Docker Compose stacks"""
    pass


@cli.command()
@click.option('--previous', 'previous_revision', default=None,
              help="Previously deployed revision ('initial' for first deploy). Defaults to the last recorded deployment")
@click.option('--current', 'current_revision', default=None, help='Revision to deploy (default: HEAD)')
@click.option('--deploy-all', is_flag=True, help='Redeploy every service without looking at the diff')
@click.option('--services', default=None, help='Space or comma separated services to redeploy without diff detection')
@click.option('--service', multiple=True, help='Service to redeploy (repeatable)')
@click.option('--dry-run', is_flag=True, help='Resolve and print the plan without deploying')
@click.option('--global-config', default=None, help='Path to stackdeploy YAML config')
@click.option('--log-level', default=None, help='Log level')
@click.pass_context
def run(ctx, previous_revision: Optional[str], current_revision: Optional[str], deploy_all: bool,
        services: Optional[str], service: Tuple[str, ...], dry_run: bool,
        global_config: Optional[str], log_level: Optional[str]):
    """Run one deployment attempt"""
    global_cfg = _load_config(global_config)
    setup_logging(global_cfg, log_level)
    logger = logging.getLogger(__name__)

    trigger = TriggerRequest(
        previous_revision=previous_revision,
        current_revision=current_revision,
        deploy_all=deploy_all,
        services=parse_services(services, service),
        dry_run=dry_run
    )

    try:
        report = asyncio.run(_run_orchestrator(global_cfg, trigger))
    except StackDeployError as e:
        # Raised while wiring components (rule table, secret store config)
        logger.error(f"Deployment aborted before start: {e}")
        raise click.ClickException(str(e))

    click.echo("\n".join(report.summary_lines()))
    ctx.exit(report.exit_code())


@cli.command()
@click.option('--previous', 'previous_revision', default=None, help='Previously deployed revision')
@click.option('--current', 'current_revision', default=None, help='Revision to deploy (default: HEAD)')
@click.option('--global-config', default=None, help='Path to stackdeploy YAML config')
@click.option('--log-level', default='WARNING', help='Log level')
@click.pass_context
def plan(ctx, previous_revision: Optional[str], current_revision: Optional[str],
         global_config: Optional[str], log_level: str):
    """Show which services a deployment would touch"""
    ctx.invoke(
        run,
        previous_revision=previous_revision,
        current_revision=current_revision,
        deploy_all=False,
        services=None,
        service=(),
        dry_run=True,
        global_config=global_config,
        log_level=log_level
    )


@cli.command()
@click.option('--global-config', default=None, help='Path to stackdeploy YAML config')
def status(global_config: Optional[str]):
    """Show the state of every service in the stack"""
    global_cfg = _load_config(global_config)
    setup_logging(global_cfg, 'WARNING')
    logger = logging.getLogger(__name__)

    runtime = ComposeRuntime(
        project_dir=global_cfg.project_dir(),
        compose_command=global_cfg.compose.command,
        compose_files=global_cfg.compose.files,
        project_name=global_cfg.compose.project_name,
        command_timeout=global_cfg.compose.command_timeout
    )

    try:
        statuses = asyncio.run(runtime.list_status())
    except StackDeployError as e:
        logger.error(f"Failed to get status: {e}")
        raise click.ClickException(str(e))

    if not statuses:
        click.echo("No services found")
        return

    click.echo(f"{'SERVICE':<32} STATE")
    for s in statuses:
        click.echo(f"{s.service:<32} {s.state}")


@cli.command()
@click.option('--limit', default=10, show_default=True, help='Number of reports to show')
@click.option('--global-config', default=None, help='Path to stackdeploy YAML config')
def history(limit: int, global_config: Optional[str]):
    """List recent deployment attempts"""
    global_cfg = _load_config(global_config)
    store = DeploymentHistory(global_cfg.history.state_dir, global_cfg.history.max_reports)

    try:
        last = store.last_deployed_revision()
    except ConfigurationError as e:
        click.echo(f"Warning: {e}", err=True)
        last = "unreadable"
    click.echo(f"Last deployed revision: {last or 'none'}")

    reports = store.list_reports(limit)
    if not reports:
        click.echo("No deployments recorded")
        return

    click.echo(f"\n{'RUN':<28} {'OUTCOME':<18} {'PLAN':<30} ELAPSED")
    for r in reports:
        plan_info = r.get('plan') or {}
        if plan_info.get('kind') == 'subset':
            plan_text = ",".join(plan_info.get('services', []))
        else:
            plan_text = plan_info.get('kind', '-')
        if len(plan_text) > 30:
            plan_text = plan_text[:27] + '...'
        click.echo(
            f"{r.get('run_id', '?'):<28} {r.get('outcome') or '-':<18} {plan_text:<30} {r.get('elapsed', 0):.1f}s"
        )
        if r.get('failed_stage'):
            click.echo(f"    failed stage: {r['failed_stage']}: {r.get('error')}")


if __name__ == '__main__':
    cli()
