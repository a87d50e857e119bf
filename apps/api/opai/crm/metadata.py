from __future__ import annotations

import copy
from typing import Any

METADATA_VERSION = 1

COMPANY_ENRICHMENT = "companyEnrichment"
INBOUND_EMAIL = "inboundEmail"
REJECTION = "rejection"


def merge_namespace(metadata: dict[str, Any] | None, namespace: str, value: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``metadata`` with ``namespace`` replaced by ``value``.

    Sibling namespaces are carried over untouched. The stored namespace is
    stamped with the current metadata version.
    """
    merged = copy.deepcopy(metadata) if isinstance(metadata, dict) else {}
    merged[namespace] = {**value, "version": METADATA_VERSION}
    return merged


def get_namespace(metadata: dict[str, Any] | None, namespace: str) -> dict[str, Any] | None:
    if not isinstance(metadata, dict):
        return None
    value = metadata.get(namespace)
    return value if isinstance(value, dict) else None
