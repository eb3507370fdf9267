"""olmed-gateway jobs command - Inspect, validate and execute jobs."""

import asyncio
import json
from pathlib import Path
from typing import Dict, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from olmed_gateway.cli.error_handler import NetworkError, ValidationError, handle_errors

app = typer.Typer(help="Inspect, validate and execute scheduled jobs.")
console = Console()


def _parse_headers(values: Optional[List[str]]) -> Dict[str, str]:
    """Parse ``Name: value`` pairs given on the command line."""
    headers: Dict[str, str] = {}
    for value in values or []:
        name, sep, header_value = value.partition(":")
        if not sep or not name.strip():
            raise ValidationError(
                f"Invalid header: {value!r}",
                details={"expected": "Name: value"},
            )
        headers[name.strip()] = header_value.strip()
    return headers


@app.command("preview")
def preview_jobs() -> None:
    """Show the jobs the sync configurations would register.

    Example:
        olmed-gateway jobs preview
    """
    from olmed_gateway.clock import utcnow
    from olmed_gateway.config import get_config
    from olmed_gateway.sync.configurations import stores_from_config

    config = get_config()
    now = utcnow()

    table = Table(title="Sync Jobs")
    table.add_column("ID", style="cyan")
    table.add_column("Provider", style="magenta")
    table.add_column("Schedule", style="green")
    table.add_column("Request")
    table.add_column("Next Run")

    count = 0
    for store in stores_from_config(config):
        for job_id, schedule in store.jobs():
            request = schedule.request
            table.add_row(
                job_id,
                store.provider_name,
                schedule.describe(),
                f"{request.method} {request.url}",
                schedule.compute_next(now).strftime("%Y-%m-%d %H:%M:%S"),
            )
            count += 1

    if count == 0:
        console.print("[yellow]No active sync configurations[/yellow]")
        return

    console.print(table)


@app.command("validate")
@handle_errors
def validate_job(
    definition: Optional[str] = typer.Argument(
        None,
        help="Schedule as JSON (e.g. '{\"kind\": \"daily\", \"hour\": 8, ...}').",
    ),
    file: Optional[Path] = typer.Option(
        None,
        "--file",
        "-f",
        help="Read the schedule JSON from a file.",
        exists=True,
        dir_okay=False,
    ),
) -> None:
    """Validate a schedule definition and show when it would run next.

    Example:
        olmed-gateway jobs validate '{"kind": "interval", "interval_seconds": 30, "request": {"url": "https://example.com/ping"}}'
        olmed-gateway jobs validate --file job.json
    """
    from olmed_gateway.clock import utcnow
    from olmed_gateway.scheduler.exceptions import ScheduleConfigurationError
    from olmed_gateway.scheduler.schedule import Schedule

    if file is not None:
        definition = file.read_text(encoding="utf-8")
    if not definition:
        raise ValidationError("Provide a schedule as an argument or with --file")

    try:
        data = json.loads(definition)
    except ValueError as e:
        raise ValidationError(f"Invalid JSON: {e}")
    if not isinstance(data, dict):
        raise ValidationError("Schedule must be a JSON object")

    try:
        schedule = Schedule.from_dict(data)
        schedule.validate()
    except ScheduleConfigurationError as e:
        details = {"field": e.field} if e.field else None
        raise ValidationError(str(e), details=details)

    console.print(f"[green]✓[/green] Valid schedule: {schedule.describe()}")
    console.print(f"  Request: {schedule.request.method} {schedule.request.url}")
    console.print(f"  Next run: {schedule.compute_next(utcnow()).isoformat()}")


@app.command("execute")
@handle_errors
def execute_job(
    url: str = typer.Option(..., "--url", "-u", help="Target URL."),
    method: str = typer.Option("GET", "--method", "-X", help="HTTP method."),
    header: Optional[List[str]] = typer.Option(
        None,
        "--header",
        "-H",
        help="Request header as 'Name: value' (repeatable).",
    ),
    body: Optional[str] = typer.Option(None, "--body", "-d", help="Request body (POST/PUT)."),
    shared_auth: bool = typer.Option(
        False,
        "--shared-auth",
        help="Attach the shared Olmed bearer token (logs in if needed).",
    ),
) -> None:
    """Send a one-off request through the job executor.

    Example:
        olmed-gateway jobs execute --url https://example.com/ping
        olmed-gateway jobs execute -X POST --url https://draft-csm-connector.grupaolmed.pl/erp-api/products/get-products --body '{"marketplace": "APTEKA_OLMED"}' --shared-auth
    """
    from olmed_gateway.config import get_config
    from olmed_gateway.daemon.service import GatewayDaemon, create_http_client
    from olmed_gateway.scheduler.exceptions import ScheduleConfigurationError
    from olmed_gateway.scheduler.schedule import RequestTemplate

    config = get_config()
    template = RequestTemplate(
        method=method,
        url=url,
        headers=_parse_headers(header),
        body=body,
        use_shared_auth=shared_auth,
    )

    async def _execute():
        async with create_http_client(config) as client:
            scheduler = GatewayDaemon(config, http_client=client).build_scheduler()
            return await scheduler.execute_ad_hoc(template)

    try:
        outcome = asyncio.run(_execute())
    except ScheduleConfigurationError as e:
        raise ValidationError(str(e))

    if outcome.status_code == 0:
        raise NetworkError(f"Request failed: {outcome.error}", details={"url": url})

    color = "green" if outcome.success else "red"
    console.print(f"[{color}]{outcome.status_code}[/{color}] {template.method} {url} ({outcome.duration_ms:.0f} ms)")
    if outcome.response_body:
        console.print(outcome.truncated(2000), markup=False)

    if not outcome.success:
        raise typer.Exit(code=1)
