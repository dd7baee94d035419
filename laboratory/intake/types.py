"""
InternalBooking: the one shape the request-order services understand.

Every adapter's transform() returns this structure. services.py only
consumes it and never touches the raw external payload.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any


@dataclass
class PatientData:
    first_name: str
    last_name: str = ""
    phone: str = ""
    email: str = ""
    id: str = ""  # existing Patient id, when the client already knows it


@dataclass
class TestItemData:
    name: str
    price: Decimal = Decimal("0.00")
    test_id: str = ""
    laboratory_id: str = ""  # "" = applies to every assigned lab

    __test__ = False

    def as_json(self) -> dict:
        return {
            "name": self.name,
            "price": float(self.price),
            "test_id": self.test_id,
            "laboratory_id": self.laboratory_id,
        }


@dataclass
class InternalBooking:
    """
    Normalized incoming booking.

    raw_payload keeps the original body for troubleshooting only.
    source identifies the adapter that produced it.
    confirm is True when the client resubmits after a WarningError.
    """

    patient: PatientData
    items: list[TestItemData] = field(default_factory=list)
    laboratory_ids: list[str] = field(default_factory=list)
    request_type: str = "book_test_visit"
    visit_type: str = "lab"
    patient_address: dict = field(default_factory=dict)
    payment_status: str = "pending"
    source: str = ""
    confirm: bool = False
    raw_payload: Any = field(default=None, repr=False)
