"""
Decoding and validation of claim messages.
"""

import json
from typing import Any

import pydantic

from claim_routing.core.exceptions import ValidationError
from claim_routing.core.models import Claim

REQUIRED_FIELDS = (
    "ProcessId",
    "Target",
    "Source",
    "DocumentNumber",
    "InvoiceAmount",
    "ExternalReference",
    "ClaimId",
    "ConceptApplicationCode",
    "ObjectionCode",
    "Value",
)


def capitalize_keys(payload: dict[str, Any]) -> dict[str, Any]:
    """
    Upper-case the first letter of every top-level key.

    Producers send both ``claimId`` and ``ClaimId``; the wire contract uses
    the latter.
    """
    return {
        (key[:1].upper() + key[1:] if isinstance(key, str) else key): value
        for key, value in payload.items()
    }


def decode_payload(raw: bytes | str) -> dict[str, Any]:
    """
    Decode a raw message body into a JSON object.

    Args:
        raw: Message body

    Returns:
        Decoded dictionary

    Raises:
        ValidationError: If the body is not UTF-8 JSON or not an object
    """
    try:
        text = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw
        payload = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValidationError(f"Message is not valid JSON: {e}", details={"raw": _preview(raw)}) from e

    if not isinstance(payload, dict):
        raise ValidationError(
            "Message must be a JSON object",
            details={"raw": _preview(raw)},
        )
    return payload


def parse_claim(payload: dict[str, Any]) -> Claim:
    """
    Validate a decoded payload and build the Claim.

    Args:
        payload: Decoded message (any key casing)

    Returns:
        Immutable Claim

    Raises:
        ValidationError: If required fields are missing or have the wrong type
    """
    normalized = capitalize_keys(payload)
    missing = [name for name in REQUIRED_FIELDS if normalized.get(name) is None]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            details={"missing_fields": missing, "payload": payload},
        )

    try:
        return Claim.model_validate({name: normalized[name] for name in REQUIRED_FIELDS})
    except pydantic.ValidationError as e:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError(
            f"Invalid claim message: {errors[0]['field']}: {errors[0]['message']}",
            details={"errors": errors, "payload": payload},
        ) from e


def decode_claim(raw: bytes | str) -> Claim:
    """Decode and validate a raw message body."""
    return parse_claim(decode_payload(raw))


def _preview(raw: bytes | str, limit: int = 200) -> str:
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    return raw[:limit]
