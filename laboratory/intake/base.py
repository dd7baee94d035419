"""
BaseIntakeAdapter: abstract base for every booking source.

A new source only needs to:
1. subclass BaseIntakeAdapter
2. implement parse() and transform()
3. register one line in factory.py
"""

import json
import uuid
from abc import ABC, abstractmethod
from typing import Any

from ..exceptions import ValidationError
from .types import InternalBooking

VISIT_TYPES = ("home", "lab")


class BaseIntakeAdapter(ABC):
    """
    Three step pipeline: parse -> transform -> validate

    Subclasses implement transform(); parse() defaults to JSON.
    validate() covers the checks every source shares.
    """

    source: str = ""

    def __init__(self, raw_body: bytes | str | dict, content_type: str = ""):
        self._raw_body = raw_body
        self._content_type = content_type
        self._parsed: Any = None

    def parse(self) -> Any:
        """Raw body -> dict. Stored on self._parsed for transform()."""
        raw = self._raw_body
        if isinstance(raw, (bytes, str)):
            try:
                raw = json.loads(raw)
            except (ValueError, UnicodeDecodeError):
                raise ValidationError(
                    message="Request body is not valid JSON.",
                    code="INVALID_PAYLOAD",
                )
        if not isinstance(raw, dict):
            raise ValidationError(
                message="Request body must be a JSON object.",
                code="INVALID_PAYLOAD",
            )
        self._parsed = raw
        return raw

    @abstractmethod
    def transform(self) -> InternalBooking:
        """
        self._parsed -> InternalBooking.
        Must keep the original data in InternalBooking.raw_payload.
        """

    def validate(self, booking: InternalBooking) -> None:
        errors = []

        if not booking.laboratory_ids:
            errors.append({"field": "laboratories", "message": "At least one laboratory must be assigned."})
        for i, lab_id in enumerate(booking.laboratory_ids):
            if not _is_uuid(lab_id):
                errors.append({"field": f"laboratories[{i}]", "message": f"Invalid laboratory id: {lab_id!r}."})

        if not booking.patient.id and not booking.patient.phone:
            errors.append({"field": "patient", "message": "Patient id or phone is required."})
        if booking.patient.id and not _is_uuid(booking.patient.id):
            errors.append({"field": "patient.id", "message": f"Invalid patient id: {booking.patient.id!r}."})

        if not any(item.name for item in booking.items):
            errors.append({"field": "items", "message": "At least one test with a name is required."})
        for i, item in enumerate(booking.items):
            if item.price < 0:
                errors.append({"field": f"items[{i}].price", "message": "Price cannot be negative."})

        if booking.visit_type not in VISIT_TYPES:
            errors.append({"field": "visitType", "message": "visitType must be 'home' or 'lab'."})

        if errors:
            raise ValidationError(
                message="Request validation failed.",
                code="VALIDATION_ERROR",
                detail={"errors": errors},
            )

    def process(self) -> InternalBooking:
        """parse -> transform -> validate; returns a validated InternalBooking."""
        self.parse()
        booking = self.transform()
        booking.items = [item for item in booking.items if item.name]
        self.validate(booking)
        return booking


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True
