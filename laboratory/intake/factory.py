"""
Factory: booking source string -> adapter instance.

A new source needs:
  1. an adapter class in adapters.py
  2. one line in _build_registry()
No service code changes.
"""

from ..exceptions import ValidationError
from .base import BaseIntakeAdapter

DEFAULT_SOURCE = "admin_response"


# key: source string (X-Request-Source header or ?source= query param)
# value: adapter class (not instantiated)
def _build_registry() -> dict[str, type[BaseIntakeAdapter]]:
    # deferred import, avoids a cycle with base.py
    from .adapters import AdminResponseAdapter, LegacyAdapter, PrescriptionAdapter

    return {
        "admin_response": AdminResponseAdapter,
        "prescription":   PrescriptionAdapter,
        "legacy":         LegacyAdapter,
    }


def get_adapter(source: str, raw_body: bytes | str | dict, content_type: str = "") -> BaseIntakeAdapter:
    """
    Return an instantiated adapter for `source`.

    Raises:
        ValidationError: unknown source
    """
    registry = _build_registry()
    adapter_cls = registry.get(source)

    if adapter_cls is None:
        raise ValidationError(
            message=f"Unknown booking source: {source!r}.",
            code="UNKNOWN_SOURCE",
            detail={"known_sources": list(registry.keys())},
        )

    return adapter_cls(raw_body=raw_body, content_type=content_type)
