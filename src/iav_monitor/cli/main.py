"""
IAV Monitor CLI

Command-line interface for the IAV certificate monitor.
Provides commands for the person directory, eligibility, income
reporting, certificate queries and running the intake service.

Usage:
    iav init --db iav.db
    iav person add --personal-number 19850612-4417 --salary 90000 --capital 0
    iav eligibility check --personal-number 19850612-4417
    iav scan
    iav income report --employer 7 --personal-number 19850612-4417 --year 2025 --month 3 --income 6000
    iav cert check --personal-number 19850612-4417 --cert-id 1
    iav cert show --personal-number 19850612-4417
    iav serve --port 4570
"""

import json
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from iav_monitor.kernel.logging import configure_logging
from iav_monitor.kernel.metrics import start_metrics_server
from iav_monitor.kernel.policy import ServiceSettings
from iav_monitor.monitor import IAVMonitor
from iav_monitor.registry.models import IncomeSnapshot, MonthlyIncomeEvent

# Console logs for interactive use; `serve` reconfigures from IAV_LOG_LEVEL
configure_logging(json_output=False, log_level="INFO")

app = typer.Typer(
    name="iav",
    help="IAV Monitor - income certificate issuing and monitoring",
    add_completion=False,
)

# Sub-apps
person_app = typer.Typer(help="Person directory commands")
eligibility_app = typer.Typer(help="Eligibility commands")
income_app = typer.Typer(help="Monthly income commands")
cert_app = typer.Typer(help="Certificate queries")

app.add_typer(person_app, name="person")
app.add_typer(eligibility_app, name="eligibility")
app.add_typer(income_app, name="income")
app.add_typer(cert_app, name="cert")

# Global state
DEFAULT_DB = Path(".iav.db")
DELIVERY_WAIT_SECONDS = 10.0


def get_monitor(db_path: Optional[Path] = None) -> IAVMonitor:
    """Get an IAVMonitor for an existing database, endpoints from the environment"""
    settings = ServiceSettings.from_env()
    db = db_path or settings.db_path
    if not db.exists():
        typer.echo(f"Error: Database not found: {db}", err=True)
        typer.echo(f"Run 'iav init --db {db}' to initialize", err=True)
        raise typer.Exit(1)
    return IAVMonitor.from_settings(settings.model_copy(update={"db_path": db}))


def finish(monitor: IAVMonitor, wait: float) -> None:
    """Give pending notifications time to go out, then shut down"""
    if not monitor.wait_idle(timeout=wait):
        pending = len(monitor.dispatcher.pending())
        typer.echo(f"  ! {pending} notification(s) still undelivered after {wait:g}s", err=True)
    monitor.stop()


# Initialization command


@app.command()
def init(
    db: Annotated[
        Path,
        typer.Option(help="Database path"),
    ] = DEFAULT_DB,
) -> None:
    """Initialize a new IAV database"""
    if db.exists():
        typer.echo(f"Error: Database already exists: {db}", err=True)
        raise typer.Exit(1)

    # Creating the monitor creates the schema
    IAVMonitor(db).stop()
    typer.echo(f"✓ Initialized IAV database: {db}")


# Person commands


@person_app.command("add")
def person_add(
    personal_number: Annotated[str, typer.Option("--personal-number", help="Personal number")],
    salary: Annotated[int, typer.Option("--salary", help="Five-year salary income")],
    capital: Annotated[int, typer.Option("--capital", help="Five-year capital income")],
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="Database path"),
    ] = None,
) -> None:
    """Add or replace a person's five-year income totals"""
    monitor = get_monitor(db)
    monitor.register_person(
        IncomeSnapshot(
            personal_number=personal_number,
            salary_income=salary,
            capital_income=capital,
        )
    )
    monitor.stop()
    typer.echo(f"✓ Registered person: {personal_number}")


# Eligibility commands


@eligibility_app.command("check")
def eligibility_check(
    personal_number: Annotated[str, typer.Option("--personal-number", help="Personal number")],
    salary: Annotated[
        Optional[int],
        typer.Option("--salary", help="Five-year salary income (directory if omitted)"),
    ] = None,
    capital: Annotated[
        Optional[int],
        typer.Option("--capital", help="Five-year capital income (directory if omitted)"),
    ] = None,
    wait: Annotated[
        float,
        typer.Option("--wait", help="Seconds to wait for notification delivery"),
    ] = DELIVERY_WAIT_SECONDS,
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="Database path"),
    ] = None,
) -> None:
    """Evaluate a person and issue a certificate if eligible"""
    if (salary is None) != (capital is None):
        typer.echo("Error: --salary and --capital must be given together", err=True)
        raise typer.Exit(1)

    monitor = get_monitor(db)
    snapshot = None
    if salary is not None and capital is not None:
        snapshot = IncomeSnapshot(
            personal_number=personal_number,
            salary_income=salary,
            capital_income=capital,
        )

    decision = monitor.request_eligibility_check(personal_number, snapshot)
    typer.echo(f"Outcome: {decision.outcome.value}")
    if decision.certificate:
        typer.echo(f"  Certificate: {decision.certificate.id}")
        typer.echo(f"  Issued: {decision.certificate.issue_date}")
        typer.echo(f"  Expires: {decision.certificate.expiration_date}")
    finish(monitor, wait)


@app.command()
def scan(
    wait: Annotated[
        float,
        typer.Option("--wait", help="Seconds to wait for notification delivery"),
    ] = DELIVERY_WAIT_SECONDS,
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="Database path"),
    ] = None,
) -> None:
    """Request eligibility for every directory person within the income limits"""
    monitor = get_monitor(db)

    progress = monitor.scan_eligible_persons()

    typer.echo(f"✓ Scan completed: {progress.requested}/{progress.total} requested")
    typer.echo(f"  Granted: {progress.granted}")
    typer.echo(f"  Already registered: {progress.already_registered}")
    finish(monitor, wait)


# Income commands


@income_app.command("report")
def income_report(
    employer: Annotated[int, typer.Option("--employer", help="Employer ID")],
    personal_number: Annotated[str, typer.Option("--personal-number", help="Personal number")],
    year: Annotated[int, typer.Option("--year", help="Income year")],
    month: Annotated[int, typer.Option("--month", min=1, max=12, help="Income month")],
    income: Annotated[int, typer.Option("--income", help="Monthly income")],
    cert_id: Annotated[
        int,
        typer.Option("--cert-id", help="Certificate ID as known to the employer"),
    ] = 0,
    wait: Annotated[
        float,
        typer.Option("--wait", help="Seconds to wait for notification delivery"),
    ] = DELIVERY_WAIT_SECONDS,
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="Database path"),
    ] = None,
) -> None:
    """Report one monthly income and run stick control on it"""
    monitor = get_monitor(db)
    event = MonthlyIncomeEvent(
        employer_id=employer,
        personal_number=personal_number,
        has_certificate=True,
        certificate_id=cert_id,
        year=year,
        month=month,
        income=income,
    )

    monitor.submit_income_batch(employer, [event])
    for result in monitor.process_pending():
        typer.echo(f"State: {result.state.value}")
        if result.stick_set:
            typer.echo(f"  Minor sticks: {result.stick_set.minor_sticks}")
            typer.echo(f"  Major sticks: {result.stick_set.major_sticks}")
    finish(monitor, wait)


# Certificate commands


@cert_app.command("check")
def cert_check(
    personal_number: Annotated[str, typer.Option("--personal-number", help="Personal number")],
    cert_id: Annotated[int, typer.Option("--cert-id", help="Certificate ID")],
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="Database path"),
    ] = None,
) -> None:
    """Check that a person holds the given certificate (exit code 1 if not)"""
    monitor = get_monitor(db)
    valid = monitor.query_certificate_valid(personal_number, cert_id)
    monitor.stop()

    typer.echo("valid" if valid else "invalid")
    if not valid:
        raise typer.Exit(1)


@cert_app.command("show")
def cert_show(
    personal_number: Annotated[str, typer.Option("--personal-number", help="Personal number")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="Database path"),
    ] = None,
) -> None:
    """Show a person's certificate and stick counts"""
    monitor = get_monitor(db)
    certificate = monitor.get_certificate(personal_number)
    sticks = monitor.store.get_stick_set(personal_number)
    monitor.stop()

    if certificate is None:
        typer.echo(f"No certificate for {personal_number}", err=True)
        raise typer.Exit(1)

    if json_output:
        data = {
            "certificate": certificate.model_dump(mode="json"),
            "sticks": sticks.model_dump(mode="json") if sticks else None,
        }
        typer.echo(json.dumps(data, indent=2))
        return

    typer.echo(f"Certificate {certificate.id}")
    typer.echo(f"  Personal number: {certificate.personal_number}")
    typer.echo(f"  Issued: {certificate.issue_date}")
    typer.echo(f"  Expires: {certificate.expiration_date}")
    typer.echo(f"  Minor sticks: {sticks.minor_sticks if sticks else 0}")
    typer.echo(f"  Major sticks: {sticks.major_sticks if sticks else 0}")


# Service command


@app.command()
def serve(
    port: Annotated[
        Optional[int],
        typer.Option("--port", help="Intake port (default: IAV_HTTP_PORT or 4570)"),
    ] = None,
    host: Annotated[str, typer.Option("--host", help="Interface to bind")] = "0.0.0.0",
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="Database path"),
    ] = None,
) -> None:
    """Run the intake server with a background monitoring consumer"""
    from iav_monitor.http_server import initialize_server, run_server

    settings = ServiceSettings.from_env()
    if db is not None:
        settings = settings.model_copy(update={"db_path": db})
    configure_logging(log_level=settings.log_level)

    monitor = IAVMonitor.from_settings(settings)
    if settings.metrics_port:
        start_metrics_server(settings.metrics_port)

    monitor.start()
    initialize_server(monitor)
    try:
        run_server(host=host, port=port or settings.http_port)
    finally:
        monitor.stop()


def main() -> None:
    """Main entry point"""
    app()


if __name__ == "__main__":
    main()
