"""
Concrete adapters.

To add a source: add a class here, then register it in factory.py.

Registered sources:
  admin_response    AdminResponseAdapter  (tests nested under adminResponse.tests)
  prescription      PrescriptionAdapter   (investigations list from a doctor's prescription)
  legacy            LegacyAdapter         (flat testName + totalAmount)
"""

from .. import normalize
from .base import BaseIntakeAdapter
from .types import InternalBooking, PatientData, TestItemData


def _patient(raw: dict) -> PatientData:
    ref = raw.get("patientId")
    patient = raw.get("patient") if isinstance(raw.get("patient"), dict) else {}
    first, last = normalize.split_name(normalize.patient_name(raw))

    if isinstance(ref, dict):
        patient_id = str(ref.get("id") or ref.get("_id") or "")
        phone = ref.get("phone") or raw.get("patientPhone") or patient.get("phone")
        email = ref.get("email") or raw.get("patientEmail") or patient.get("email")
    else:
        patient_id = str(ref or patient.get("id") or "")
        phone = raw.get("patientPhone") or patient.get("phone")
        email = raw.get("patientEmail") or patient.get("email")

    return PatientData(
        id=patient_id.strip(),
        first_name=first,
        last_name=last,
        phone=str(phone or "").strip(),
        email=str(email or "").strip(),
    )


def _item(entry, default_lab_id: str = "") -> TestItemData:
    return TestItemData(**normalize.test_item(entry, default_lab_id))


def _unique(values) -> list[str]:
    seen = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen


def _common(raw: dict) -> dict:
    return {
        "request_type": raw.get("type") or raw.get("requestType") or "book_test_visit",
        "visit_type": raw.get("visitType") or raw.get("visit_type") or "lab",
        "patient_address": raw.get("patientAddress") or raw.get("patient_address") or {},
        "payment_status": raw.get("paymentStatus") or "pending",
        "confirm": str(raw.get("confirm", "")).lower() in ("1", "true", "yes"),
    }


# ── AdminResponseAdapter ───────────────────────────────────────────────────
#
# {
#   "patientId": {"id": "...", "firstName": "Asha", "lastName": "Rao", "phone": "9876543210"},
#   "visitType": "home",
#   "patientAddress": {"line1": "...", "city": "Pune"},
#   "adminResponse": {
#     "labs":  ["<lab uuid>"],
#     "tests": [{"labId": "<lab uuid>", "testName": "CBC", "price": 350}]
#   }
# }

class AdminResponseAdapter(BaseIntakeAdapter):
    source = "admin_response"

    def transform(self) -> InternalBooking:
        raw = self._parsed
        response = raw.get("adminResponse") or {}
        items = [_item(test) for test in response.get("tests") or []]

        labs = [normalize.lab_id_of({"lab": lab}) for lab in response.get("labs") or []]
        labs += [item.laboratory_id for item in items]

        return InternalBooking(
            source=self.source,
            raw_payload=raw,
            patient=_patient(raw),
            items=items,
            laboratory_ids=_unique(labs),
            **_common(raw),
        )


# ── PrescriptionAdapter ────────────────────────────────────────────────────
#
# {
#   "patientName": "Asha Rao", "patientPhone": "9876543210",
#   "laboratoryId": "<lab uuid>",           (or "labs": [...])
#   "investigations": ["Lipid profile", {"name": "HbA1c", "price": 450}]
# }
#
# `tests` and `items` are accepted in place of `investigations`.

class PrescriptionAdapter(BaseIntakeAdapter):
    source = "prescription"

    def transform(self) -> InternalBooking:
        raw = self._parsed
        labs = _unique([normalize.lab_id_of(raw)] + [
            normalize.lab_id_of({"lab": lab}) for lab in raw.get("labs") or []
        ])
        default_lab = labs[0] if len(labs) == 1 else ""

        entries = raw.get("investigations") or raw.get("tests") or raw.get("items") or []
        items = [_item(entry, default_lab) for entry in entries]

        return InternalBooking(
            source=self.source,
            raw_payload=raw,
            patient=_patient(raw),
            items=items,
            laboratory_ids=_unique(labs + [item.laboratory_id for item in items]),
            **_common(raw),
        )


# ── LegacyAdapter ──────────────────────────────────────────────────────────
#
# {"patientId": "<uuid>", "laboratoryId": "<lab uuid>", "testName": "CBC", "totalAmount": 350}

class LegacyAdapter(BaseIntakeAdapter):
    source = "legacy"

    def transform(self) -> InternalBooking:
        raw = self._parsed
        lab_id = normalize.lab_id_of(raw)
        item = _item({"name": raw.get("testName"), "price": raw.get("totalAmount")}, lab_id)

        return InternalBooking(
            source=self.source,
            raw_payload=raw,
            patient=_patient(raw),
            items=[item],
            laboratory_ids=_unique([lab_id]),
            **_common(raw),
        )
