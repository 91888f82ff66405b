"""
Registry Domain Models - Certificates, stick sets and income records

These are the persisted record shapes of the IAV registry plus the
transient income records that flow through it. They use Pydantic for
validation and JSON (de)serialization.

Fun fact: a stick is the Swedish tax office's word for a strike - "en
pinne" - and the monitor counts them much like a referee would.
"""

from datetime import date

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Records cross the wire in camelCase; Python code uses field names
WIRE_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class IncomeSnapshot(BaseModel):
    """
    Five-year income aggregate for one person

    Attributes:
        personal_number: Person identifier
        salary_income: Salary income over the five-year window
        capital_income: Capital income over the five-year window
    """

    personal_number: str = Field(..., min_length=1)
    salary_income: int
    capital_income: int

    model_config = WIRE_CONFIG | {
        "json_schema_extra": {
            "examples": [
                {
                    "personal_number": "19850612-4417",
                    "salary_income": 90000,
                    "capital_income": 15000,
                }
            ]
        },
    }


class Certificate(BaseModel):
    """
    An active IAV certificate

    At most one certificate exists per personal number. The expiration
    date is fixed when the certificate is issued and never recomputed.
    """

    id: int
    personal_number: str
    issue_date: date
    expiration_date: date

    model_config = WIRE_CONFIG | {
        "json_schema_extra": {
            "examples": [
                {
                    "id": 42,
                    "personal_number": "19850612-4417",
                    "issue_date": "2025-01-15",
                    "expiration_date": "2031-01-15",
                }
            ]
        },
    }


class StickSet(BaseModel):
    """
    Strike counters for a monitored certificate holder

    Counts never decrease; the set is destroyed together with the
    certificate on revocation.
    """

    personal_number: str
    minor_sticks: int = Field(default=0, ge=0)
    major_sticks: int = Field(default=0, ge=0)

    model_config = {"frozen": True}

    @classmethod
    def empty(cls, personal_number: str) -> "StickSet":
        """A zeroed stick set for a person seen for the first time"""
        return cls(personal_number=personal_number)


class MonthlyIncomeEvent(BaseModel):
    """
    One employer-reported monthly income for one person

    has_certificate and certificate_id are what the reporting party
    believes; the monitor trusts only its own registry.
    """

    employer_id: int
    personal_number: str = Field(..., min_length=1)
    has_certificate: bool = Field(default=False, alias="hasCert")
    certificate_id: int = Field(default=0, alias="certId")
    year: int
    month: int = Field(..., ge=1, le=12)
    income: int

    model_config = WIRE_CONFIG | {
        "json_schema_extra": {
            "examples": [
                {
                    "employer_id": 7,
                    "personal_number": "19850612-4417",
                    "has_certificate": True,
                    "certificate_id": 42,
                    "year": 2025,
                    "month": 3,
                    "income": 6000,
                }
            ]
        },
    }


class CorrelationInfo(BaseModel):
    """
    Pass-through metadata attached to an eligibility request

    Carried unchanged into the CertificateGranted event so the receiving
    side can measure end-to-end latency of a scan.

    Attributes:
        last_one: True on the final request of an eligibility scan
        start_time: Originating timestamp in epoch milliseconds
    """

    last_one: bool = False
    start_time: int = 0

    model_config = WIRE_CONFIG
