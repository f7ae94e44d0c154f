"""
Billing CLI - Main entry point.
Built with Click for a rich command-line interface.
"""

import logging
import signal
import sys
import time

import click
from rich.console import Console
from rich.table import Table

console = Console()


def get_services(ctx, create_tables=False):
    """Build the billing services once per invocation."""
    from scheduler.services import build_services

    if 'services' not in ctx.obj:
        ctx.obj['services'] = build_services(db_url=ctx.obj.get('db_url'), create_tables=create_tables)
    return ctx.obj['services']


@click.group()
@click.version_option(version='1.0.0', prog_name='billing-cli')
@click.option('--config-dir', '-c', default=None, help='Directory holding the YAML config files')
@click.option('--db-url', envvar='DATABASE_URL', default=None, help='Database URL (overrides database.yaml)')
@click.option('--verbose', '-v', is_flag=True, help='Debug logging')
@click.pass_context
def cli(ctx, config_dir, db_url, verbose):
    """Tenant Billing Engine - generate bills, record payments and deliver SMS."""
    from common.config_loader import get_config

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )
    get_config(config_dir)

    ctx.ensure_object(dict)
    ctx.obj['db_url'] = db_url


# =============================================================================
# Daemon Commands
# =============================================================================

@cli.group()
def daemon():
    """Manage the billing scheduler process."""
    pass


@daemon.command()
@click.option('--with-web', is_flag=True, help='Serve the REST API from the same process')
@click.pass_context
def start(ctx, with_web):
    """Start the scheduler in the foreground. Press Ctrl+C to stop."""
    services = get_services(ctx, create_tables=True)

    console.print("[yellow]Starting scheduler...[/yellow]")
    services.scheduler.start()

    def signal_handler(signum, frame):
        console.print("\n[yellow]Shutting down...[/yellow]")
        services.scheduler.stop(wait=services.config.wait_for_jobs)
        services.close()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    status = services.scheduler.status()
    console.print(
        f"[green]Scheduler running. Billing day {status['billingDay']}, "
        f"next run {status['nextBillingRun'] or 'N/A'}[/green]"
    )

    if with_web:
        from web.app import create_app
        app = create_app(services)
        app.run(host=services.config.web_host, port=services.config.web_port, use_reloader=False)
        return

    while services.scheduler.is_running:
        time.sleep(1)


@cli.command()
@click.pass_context
def status(ctx):
    """Show scheduler state, queue counts and the last billing run."""
    from scheduler.models import SchedulerState

    services = get_services(ctx)

    with services.sessions.session_scope() as session:
        state = session.get(SchedulerState, 1)
        state = state.to_dict() if state else None

    table = Table(title="Scheduler Status")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    if state:
        table.add_row("Status", state['status'].upper())
        table.add_row("Host", state['host_name'] or 'N/A')
        table.add_row("PID", str(state['pid']) if state['pid'] else 'N/A')
        table.add_row("Started", state['started_at'] or 'N/A')
        table.add_row("Last Heartbeat", state['last_heartbeat'] or 'N/A')
        table.add_row("Billing Day", str(state['billing_day'] or 'N/A'))
        table.add_row("Last Billing Run", state['last_billing_run_at'] or 'N/A')
        table.add_row("Last Queue Flush", state['last_flush_at'] or 'N/A')
        table.add_row("Version", state['version'] or 'N/A')
    else:
        table.add_row("Status", "NOT INITIALIZED")

    stats = services.dispatcher.queue_stats()
    table.add_row("SMS Pending", str(stats['pending']))
    table.add_row("SMS Failed", str(stats['failed']))

    console.print(table)


# =============================================================================
# Bills Commands
# =============================================================================

@cli.group()
def bills():
    """Generate and inspect monthly bills."""
    pass


@bills.command('run')
@click.option('--month', '-m', help='Target month YYYY-MM (current month if omitted)')
@click.option('--flush', is_flag=True, help='Deliver queued messages afterwards')
@click.pass_context
def run_bills(ctx, month, flush):
    """Run the Monthly Bill Generator now."""
    from billing.exceptions import BillingError

    services = get_services(ctx)
    console.print(f"[yellow]Generating bills for {month or 'current month'}...[/yellow]")

    try:
        result = services.generator.generate(month, triggered_by='cli')
    except BillingError as e:
        console.print(f"[red]{e.message}[/red]")
        sys.exit(1)

    table = Table(title=f"Billing Run {result['month']} (#{result['runId']})")
    table.add_column("Tenant", style="cyan")
    table.add_column("Unit", style="blue")
    table.add_column("Total Due", style="yellow", justify="right")
    table.add_column("Outcome", style="green")

    for bill in result['bills']:
        table.add_row(bill['tenantName'], bill['unitCode'], bill['totalDue'], "[green]queued[/green]")
    for skip in result['skipped']:
        table.add_row(skip['tenantName'], skip['unitCode'], skip['totalDue'], f"[dim]{skip['reason']}[/dim]")
    for failure in result['failed']:
        table.add_row(failure['tenantName'] or '-', failure['unitCode'] or '-', '-', f"[red]{failure['error']}[/red]")

    console.print(table)
    console.print(
        f"Tenants: {result['totalTenants']}  Bills: {result['billsGenerated']}  "
        f"Skipped: {len(result['skipped'])}  Failed: {result['billsFailed']}"
    )

    if flush:
        outcome = services.dispatcher.flush()
        console.print(f"[green]Delivered {outcome['successful']}/{outcome['processed']} message(s)[/green]")


@bills.command('show')
@click.argument('tenant_id', type=int)
@click.argument('unit_id', type=int)
@click.option('--month', '-m', required=True, help='Month YYYY-MM')
@click.pass_context
def show_bill(ctx, tenant_id, unit_id, month):
    """Show the current bill breakdown for a tenant and unit."""
    from billing.calculator import BillCalculator
    from billing.exceptions import BillingError

    services = get_services(ctx)

    try:
        with services.sessions.session_scope() as session:
            bill = BillCalculator(session).calculate(tenant_id, unit_id, month)
    except BillingError as e:
        console.print(f"[red]{e.message}[/red]")
        sys.exit(1)

    table = Table(title=f"{bill.tenant_name} - {bill.unit_code} ({bill.month})")
    table.add_column("Stream", style="cyan")
    table.add_column("Charged", justify="right")
    table.add_column("Paid", justify="right", style="green")
    table.add_column("Due", justify="right", style="yellow")

    table.add_row("Rent", str(bill.rent_amount), str(bill.rent_paid), str(bill.rent_due))
    table.add_row("Water", str(bill.water_amount), str(bill.water_paid), str(bill.water_due))
    table.add_row("Arrears", str(bill.arrears_amount), str(bill.arrears_paid), str(bill.arrears_due))
    table.add_row("[bold]Total[/bold]", "", "", f"[bold]{bill.total_due}[/bold]")

    console.print(table)
    if bill.advance_amount:
        covered = "covers" if bill.covered_by_advance else "does not cover"
        console.print(f"Advance credit KSh {bill.advance_amount} {covered} this bill")


@bills.command('history')
@click.option('--limit', '-n', default=20, help='Number of runs')
@click.pass_context
def bill_history(ctx, limit):
    """Show recent billing runs."""
    services = get_services(ctx)

    table = Table(title="Billing Runs")
    table.add_column("ID", style="dim")
    table.add_column("Month", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Tenants", justify="right")
    table.add_column("Sent", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Triggered By", style="dim")
    table.add_column("Run At", style="yellow")

    for run in services.generator.recent_runs(limit):
        status_style = {
            'completed': '[green]completed[/green]',
            'failed': '[red]failed[/red]',
        }.get(run['status'], run['status'])

        table.add_row(
            str(run['id']),
            run['month'],
            status_style,
            str(run['total_tenants']),
            str(run['bills_sent']),
            str(run['skipped']),
            str(run['bills_failed']),
            run['triggered_by'] or '-',
            run['run_date'],
        )

    console.print(table)


# =============================================================================
# Queue Commands
# =============================================================================

@cli.group()
def queue():
    """Inspect and drive the outbound SMS queue."""
    pass


@queue.command('flush')
@click.option('--limit', '-n', type=int, default=None, help='Maximum messages to send')
@click.pass_context
def flush_queue(ctx, limit):
    """Deliver pending messages now."""
    services = get_services(ctx)
    result = services.dispatcher.flush(limit)
    console.print(
        f"Processed {result['processed']}: "
        f"[green]{result['successful']} sent[/green], [red]{result['failed']} failed[/red]"
    )


@queue.command('retry')
@click.argument('item_ids', type=int, nargs=-1)
@click.pass_context
def retry_queue(ctx, item_ids):
    """Reset failed messages to pending (all failed messages if no IDs are given)."""
    services = get_services(ctx)
    count = services.dispatcher.retry_failed(list(item_ids) or None)
    console.print(f"[green]Reset {count} message(s) to pending[/green]")


@queue.command('stats')
@click.option('--failed', 'show_failed', is_flag=True, help='List failed messages')
@click.pass_context
def queue_stats(ctx, show_failed):
    """Show queue counts per status."""
    services = get_services(ctx)
    stats = services.dispatcher.queue_stats()

    table = Table(title="SMS Queue")
    table.add_column("Status", style="cyan")
    table.add_column("Count", justify="right")
    for key in ('pending', 'sending', 'sent', 'failed', 'total'):
        table.add_row(key, str(stats[key]))
    console.print(table)

    if show_failed:
        failed = Table(title="Failed Messages")
        failed.add_column("ID", style="dim")
        failed.add_column("Recipient", style="cyan")
        failed.add_column("Type")
        failed.add_column("Attempts", justify="right")
        failed.add_column("Error", style="red")
        for item in services.dispatcher.failed_items():
            failed.add_row(
                str(item['id']), item['recipient_phone'], item['message_type'],
                str(item['attempts']), (item['error_message'] or '')[:80],
            )
        console.print(failed)


# =============================================================================
# Database Commands
# =============================================================================

@cli.group()
def db():
    """Database maintenance."""
    pass


@db.command('init')
@click.pass_context
def init_database(ctx):
    """Create any missing ledger and scheduler tables."""
    get_services(ctx, create_tables=True)
    console.print("[green]Database tables ensured[/green]")


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
