"""Canonical, order-stable serialization of audit records.

The field order below is part of the on-disk format: changing it, or the
timestamp rendering, invalidates every stored ``previous_hash``.
"""

import hashlib
import json
from datetime import UTC, datetime
from typing import Any, Protocol


class ChainRecord(Protocol):
    """Attributes an audit record must expose to take part in the chain."""

    id: int
    timestamp: datetime | str | None
    user_id: int | None
    user_email: str | None
    user_role: str | None
    action: str
    resource_type: str | None
    resource_id: str | None
    ip_address: str | None
    user_agent: str | None
    request_method: str | None
    request_path: str | None
    status: str
    error_code: str | None
    error_message: str | None
    event_metadata: dict | None
    previous_hash: str | None


def format_timestamp(value: datetime | str | None) -> str | None:
    """Render a timestamp as UTC ISO-8601 with milliseconds and a ``Z`` suffix.

    Naive datetimes are treated as UTC. Strings pass through unchanged.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    value = value.astimezone(UTC)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def _sorted_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _sorted_keys(value[key]) for key in sorted(value)}
    if isinstance(value, list):
        return [_sorted_keys(item) for item in value]
    return value


def canonical_fields(record: ChainRecord) -> dict[str, Any]:
    """Return the logical fields of a record in their fixed hashing order."""
    resource_id = record.resource_id
    return {
        "id": record.id,
        "timestamp": format_timestamp(record.timestamp),
        "userId": record.user_id,
        "userEmail": record.user_email,
        "userRole": record.user_role,
        "action": record.action,
        "resourceType": record.resource_type,
        "resourceId": str(resource_id) if resource_id is not None else None,
        "ipAddress": record.ip_address,
        "userAgent": record.user_agent,
        "requestMethod": record.request_method,
        "requestPath": record.request_path,
        "status": record.status,
        "errorCode": record.error_code,
        "errorMessage": record.error_message,
        "metadata": _sorted_keys(record.event_metadata) if record.event_metadata is not None else None,
        "previousHash": record.previous_hash or "",
    }


def compute_entry_hash(record: ChainRecord) -> str:
    """SHA-256 hex digest of a record's compact canonical JSON."""
    payload = json.dumps(canonical_fields(record), separators=(",", ":"), ensure_ascii=False, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
