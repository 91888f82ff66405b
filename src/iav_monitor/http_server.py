"""
HTTP intake and health server.

Thin Flask binding of the IAVMonitor operations for the services around
it, plus liveness/readiness probes:

    GET  /iav/checkCert?personalNumber=..&certId=..
    POST /iav/personEntitled
    POST /iav/monthlyIncomeReported     (one income, a list, or an employer batch)
    GET  /health/live | /health/ready | /health
"""

import sqlite3
from typing import Any

from flask import Flask, jsonify, request
from pydantic import BaseModel, Field, ValidationError

from iav_monitor import __version__
from iav_monitor.kernel.errors import StoreError
from iav_monitor.kernel.logging import get_logger, set_correlation_id, generate_correlation_id
from iav_monitor.monitor import IAVMonitor
from iav_monitor.registry.models import (
    WIRE_CONFIG,
    CorrelationInfo,
    IncomeSnapshot,
    MonthlyIncomeEvent,
)

logger = get_logger(__name__)

app = Flask(__name__)

# Global state - set by initialize_server()
_monitor: IAVMonitor | None = None


class PersonEntitledRequest(BaseModel):
    """Body of /iav/personEntitled; income totals are optional"""

    personal_number: str = Field(..., min_length=1)
    start_time: int = 0
    last_one: bool = False
    salary_income: int | None = None
    capital_income: int | None = None

    model_config = WIRE_CONFIG

    def snapshot(self) -> IncomeSnapshot | None:
        if self.salary_income is None or self.capital_income is None:
            return None
        return IncomeSnapshot(
            personal_number=self.personal_number,
            salary_income=self.salary_income,
            capital_income=self.capital_income,
        )


class IncomeBatchRequest(BaseModel):
    """An employer's monthly incomes in one request"""

    employer_id: int
    incomes: list[MonthlyIncomeEvent]

    model_config = WIRE_CONFIG


def initialize_server(monitor: IAVMonitor) -> None:
    """
    Attach the monitor the routes operate on.

    Args:
        monitor: Fully wired IAVMonitor
    """
    global _monitor
    _monitor = monitor
    logger.info("Intake server initialized", db_path=str(monitor.sqlite_path))


def _require_monitor() -> IAVMonitor:
    if _monitor is None:
        raise RuntimeError("Intake server not initialized")
    return _monitor


@app.before_request
def _bind_correlation_id() -> None:
    set_correlation_id(request.headers.get("X-Correlation-Id") or generate_correlation_id())


@app.errorhandler(ValidationError)
def _invalid_body(e: ValidationError) -> tuple[Any, int]:
    logger.warning("Rejected malformed request", path=request.path, errors=e.error_count())
    details = e.errors(include_url=False, include_context=False, include_input=False)
    return jsonify({"error": "invalid_request", "details": details}), 400


@app.errorhandler(StoreError)
def _store_failure(e: StoreError) -> tuple[Any, int]:
    logger.error("Persistence failure", path=request.path, error=str(e))
    return jsonify({"error": "persistence_failure"}), 500


# ============================================================================
# Intake
# ============================================================================


@app.route("/iav/checkCert", methods=["GET"])
def check_cert() -> tuple[Any, int]:
    """
    Check that a person holds the given certificate.

    Returns:
        JSON true/false, or 400 when a parameter is missing or malformed
    """
    personal_number = request.args.get("personalNumber")
    cert_id = request.args.get("certId", type=int)
    if not personal_number or cert_id is None:
        return jsonify({"error": "personalNumber and integer certId are required"}), 400

    return jsonify(_require_monitor().query_certificate_valid(personal_number, cert_id)), 200


@app.route("/iav/personEntitled", methods=["POST"])
def person_entitled() -> tuple[Any, int]:
    """
    Eligibility request for one person.

    Returns:
        JSON with the decision outcome and the certificate id, if any
    """
    body = PersonEntitledRequest.model_validate(request.get_json(force=True))
    decision = _require_monitor().request_eligibility_check(
        body.personal_number,
        body.snapshot(),
        CorrelationInfo(last_one=body.last_one, start_time=body.start_time),
    )
    return (
        jsonify(
            {
                "status": "ok",
                "outcome": decision.outcome.value,
                "certId": decision.certificate.id if decision.certificate else None,
            }
        ),
        200,
    )


@app.route("/iav/monthlyIncomeReported", methods=["POST"])
def monthly_income_reported() -> tuple[Any, int]:
    """
    Accept monthly incomes for stick control.

    The body is a single income, a JSON list of incomes, or
    {"employerId": .., "incomes": [..]}. Incomes are only queued here;
    processing happens on the monitoring consumer.

    Returns:
        JSON with the number of incomes queued
    """
    payload = request.get_json(force=True)
    if isinstance(payload, list):
        incomes = [MonthlyIncomeEvent.model_validate(item) for item in payload]
        employer_id = incomes[0].employer_id if incomes else 0
    elif isinstance(payload, dict) and "incomes" in payload:
        batch = IncomeBatchRequest.model_validate(payload)
        incomes, employer_id = batch.incomes, batch.employer_id
    else:
        income = MonthlyIncomeEvent.model_validate(payload)
        incomes, employer_id = [income], income.employer_id

    queued = _require_monitor().submit_income_batch(employer_id, incomes)
    return jsonify({"status": "ok", "queued": queued}), 200


# ============================================================================
# Health
# ============================================================================


@app.route("/health/live", methods=["GET"])
def liveness() -> tuple[Any, int]:
    """Liveness probe - the process is running."""
    return jsonify({"status": "alive", "service": "iav-monitor"}), 200


@app.route("/health/ready", methods=["GET"])
def readiness() -> tuple[Any, int]:
    """
    Readiness probe - the database answers and no consumer has died.

    Returns:
        200 if ready, 503 if not
    """
    if _monitor is None:
        logger.error("Readiness check failed: monitor not initialized")
        return jsonify({"status": "not_ready", "reason": "monitor_not_initialized"}), 503

    try:
        certificate_count = _monitor.store.count_certificates()
    except (sqlite3.Error, StoreError) as e:
        logger.error("Readiness check failed: DB error", error=str(e))
        return (
            jsonify(
                {
                    "status": "not_ready",
                    "reason": "database_operational_error",
                    "error": str(e),
                }
            ),
            503,
        )

    failed = [w.partition for w in _monitor.workers if w.failure is not None]
    if failed:
        return (
            jsonify({"status": "not_ready", "reason": "consumer_failed", "partitions": failed}),
            503,
        )

    return (
        jsonify({"status": "ready", "database": "accessible", "certificates": certificate_count}),
        200,
    )


@app.route("/health", methods=["GET"])
def detailed_health() -> tuple[Any, int]:
    """
    Detailed health - registry counts, queue depth, dispatch and consumer state.

    Dead letters degrade the status without failing it; a failed
    consumer makes the service unhealthy.
    """
    health_data: dict[str, Any] = {
        "status": "healthy",
        "service": "iav-monitor",
        "version": __version__,
    }

    if _monitor is None:
        health_data["status"] = "degraded"
        health_data["monitor"] = {"status": "not_initialized"}
        return jsonify(health_data), 503

    try:
        status = _monitor.status()
    except (sqlite3.Error, StoreError) as e:
        logger.error("Health check failed", error=str(e))
        health_data["status"] = "unhealthy"
        health_data["database"] = {"status": "unhealthy", "error": str(e)}
        return jsonify(health_data), 503

    health_data.update(status)
    if not status["healthy"]:
        health_data["status"] = "unhealthy"
    elif status["dispatch"]["dead_letters"]:
        health_data["status"] = "degraded"

    status_code = 503 if health_data["status"] == "unhealthy" else 200
    return jsonify(health_data), status_code


def run_server(host: str = "0.0.0.0", port: int = 4570, debug: bool = False) -> None:
    """
    Run the intake server.

    Args:
        host: Interface to bind
        port: Port to listen on (default: 4570)
        debug: Enable Flask debug mode (default: False)
    """
    logger.info("Starting intake server", host=host, port=port)
    app.run(host=host, port=port, debug=debug, threaded=True)
