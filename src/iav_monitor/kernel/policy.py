"""
Monitoring and dispatch policy - the tunable parameters of the IAV monitor

The IAV rule is hard-coded in the sense that there is exactly one
certificate type and one stick rule, but every threshold lives here so
tests and deployments read them from one place.

Fun fact: the 5000/28000 stick thresholds correspond roughly to a part-time
and a full-time monthly salary - a person who keeps working full time for
three months no longer needs the certificate.
"""

import os
from pathlib import Path

from pydantic import BaseModel, Field


class MonitoringPolicy(BaseModel):
    """
    Eligibility and stick-control parameters

    Eligibility: salary <= max_salary_income AND capital <= max_capital_income.
    Monitoring: a certificate stays valid while
    major_sticks < max_major_sticks AND minor_sticks < max_minor_sticks.
    """

    max_salary_income: int = Field(
        default=100000,
        ge=0,
        description="Maximum five-year salary income for eligibility (inclusive)",
    )

    max_capital_income: int = Field(
        default=20000,
        ge=0,
        description="Maximum five-year capital income for eligibility (inclusive)",
    )

    validity_years: int = Field(
        default=6,
        ge=1,
        description="Years from issue date until the certificate expires",
    )

    minor_stick_income: int = Field(
        default=5000,
        ge=0,
        description="Monthly income at or above which a minor stick is counted",
    )

    major_stick_income: int = Field(
        default=28000,
        ge=0,
        description="Monthly income at or above which a major stick is counted",
    )

    max_minor_sticks: int = Field(
        default=24,
        ge=1,
        description="Minor stick count that revokes the certificate",
    )

    max_major_sticks: int = Field(
        default=3,
        ge=1,
        description="Major stick count that revokes the certificate",
    )

    model_config = {"frozen": True}

    def is_eligible(self, salary_income: int, capital_income: int) -> bool:
        """Check the five-year income predicate"""
        return (
            salary_income <= self.max_salary_income
            and capital_income <= self.max_capital_income
        )

    def sticks_for(self, income: int) -> tuple[int, int]:
        """(minor, major) increments earned by one monthly income; both may fire"""
        return (
            int(income >= self.minor_stick_income),
            int(income >= self.major_stick_income),
        )

    def within_stick_limits(self, minor_sticks: int, major_sticks: int) -> bool:
        """True while the certificate stays valid"""
        return (
            major_sticks < self.max_major_sticks
            and minor_sticks < self.max_minor_sticks
        )


class RetryPolicy(BaseModel):
    """
    Retry behavior for transient delivery failures

    With max_attempts=None (the default) a delivery is retried forever with
    a fixed delay. Setting max_attempts switches to exponential backoff
    capped at max_delay_seconds, and exhausted deliveries are dead-lettered.
    """

    max_attempts: int | None = Field(
        default=None,
        ge=1,
        description="Attempts before giving up (None retries indefinitely)",
    )

    max_delay_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Backoff ceiling when max_attempts is set",
    )

    model_config = {"frozen": True}

    @property
    def bounded(self) -> bool:
        return self.max_attempts is not None


class Endpoint(BaseModel):
    """A named downstream receiver of lifecycle events"""

    name: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    retry_delay_seconds: float = Field(
        default=0.1,
        ge=0,
        description="Fixed delay between attempts (0.1s intra-cluster, 1s for slow starters)",
    )

    model_config = {"frozen": True}


# Endpoint names used by the lifecycle components
POSTAL_CERT_GRANTED = "postal.cert_granted"
POSTAL_CERT_UNREGISTERED = "postal.cert_unregistered"
TAX_CERT_INVALID = "tax.certificate_invalid"


def default_endpoints(
    postal_url: str = "http://localhost:4572",
    tax_url: str = "http://localhost:4571",
) -> dict[str, Endpoint]:
    """Endpoints of the postal service and the tax agency"""
    postal_url = postal_url.rstrip("/")
    tax_url = tax_url.rstrip("/")
    return {
        POSTAL_CERT_GRANTED: Endpoint(
            name=POSTAL_CERT_GRANTED, url=f"{postal_url}/systemC/certGranted"
        ),
        POSTAL_CERT_UNREGISTERED: Endpoint(
            name=POSTAL_CERT_UNREGISTERED, url=f"{postal_url}/systemC/certUnregistered"
        ),
        TAX_CERT_INVALID: Endpoint(
            name=TAX_CERT_INVALID, url=f"{tax_url}/systemE/certificateInvalidEvent"
        ),
    }


class DispatchPolicy(BaseModel):
    """Where lifecycle events go and how hard we try to get them there"""

    endpoints: dict[str, Endpoint] = Field(default_factory=default_endpoints)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    max_workers: int = Field(
        default=8,
        ge=1,
        description="Size of the supervised dispatch pool",
    )
    request_timeout_seconds: float = Field(default=10.0, gt=0)


class ServiceSettings(BaseModel):
    """
    Process-level settings, read from IAV_* environment variables

    Variables:
        IAV_DB_PATH: SQLite database file (default: .iav.db)
        IAV_HTTP_PORT: intake server port (default: 4570)
        IAV_METRICS_PORT: Prometheus port, 0 disables (default: 0)
        IAV_POSTAL_URL: postal service base URL
        IAV_TAX_URL: tax agency base URL
        IAV_RETRY_DELAY: fixed retry delay in seconds (default: 0.1)
        IAV_POSTAL_RETRY_DELAY: retry delay for the postal endpoints (default: IAV_RETRY_DELAY)
        IAV_TAX_RETRY_DELAY: retry delay for the tax endpoint (default: IAV_RETRY_DELAY)
        IAV_DISPATCH_MAX_ATTEMPTS: bound on delivery attempts (unset = unbounded)
        IAV_DISPATCH_WORKERS: dispatch pool size (default: 8)
        IAV_LOG_LEVEL: logging level (default: INFO)
    """

    db_path: Path = Path(".iav.db")
    http_port: int = Field(default=4570, ge=1, le=65535)
    metrics_port: int = Field(default=0, ge=0, le=65535)
    log_level: str = "INFO"
    monitoring: MonitoringPolicy = Field(default_factory=MonitoringPolicy)
    dispatch: DispatchPolicy = Field(default_factory=DispatchPolicy)

    @classmethod
    def from_env(cls) -> "ServiceSettings":
        """Build settings from the process environment"""
        retry_delay = os.getenv("IAV_RETRY_DELAY", "0.1")
        delays = {
            POSTAL_CERT_GRANTED: os.getenv("IAV_POSTAL_RETRY_DELAY", retry_delay),
            POSTAL_CERT_UNREGISTERED: os.getenv("IAV_POSTAL_RETRY_DELAY", retry_delay),
            TAX_CERT_INVALID: os.getenv("IAV_TAX_RETRY_DELAY", retry_delay),
        }
        endpoints = {
            name: endpoint.model_copy(update={"retry_delay_seconds": float(delays[name])})
            for name, endpoint in default_endpoints(
                postal_url=os.getenv("IAV_POSTAL_URL", "http://localhost:4572"),
                tax_url=os.getenv("IAV_TAX_URL", "http://localhost:4571"),
            ).items()
        }
        max_attempts = os.getenv("IAV_DISPATCH_MAX_ATTEMPTS")

        return cls(
            db_path=Path(os.getenv("IAV_DB_PATH", ".iav.db")),
            http_port=int(os.getenv("IAV_HTTP_PORT", "4570")),
            metrics_port=int(os.getenv("IAV_METRICS_PORT", "0")),
            log_level=os.getenv("IAV_LOG_LEVEL", "INFO"),
            dispatch=DispatchPolicy(
                endpoints=endpoints,
                retry=RetryPolicy(
                    max_attempts=int(max_attempts) if max_attempts else None
                ),
                max_workers=int(os.getenv("IAV_DISPATCH_WORKERS", "8")),
            ),
        )


default_monitoring_policy = MonitoringPolicy()
