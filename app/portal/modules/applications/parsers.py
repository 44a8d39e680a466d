"""
Wire-level helpers for Jotform webhook deliveries: request authenticity
checks and payload decoding. No database access here.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qs

FILE_UPLOAD_TYPE = "control_fileupload"

_SUBMISSION_ID_KEYS = ("submissionID", "submissionId", "submission_id")
_FORM_ID_KEYS = ("formID", "formId", "form_id")


class PayloadError(ValueError):
    pass


@dataclass(frozen=True)
class Submission:
    submission_id: str
    form_id: str | None
    answers: dict[str, dict[str, Any]]
    created_at: str | None = None
    ip: str | None = None
    extra: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Submission":
        submission_id = _first_text(payload, _SUBMISSION_ID_KEYS)
        raw_answers = payload.get("answers")
        answers: dict[str, dict[str, Any]] = {}
        if isinstance(raw_answers, dict):
            answers = {str(k): v for k, v in raw_answers.items() if isinstance(v, dict)}
        if not submission_id or not answers:
            raise PayloadError("Missing required fields")
        return cls(
            submission_id=submission_id,
            form_id=_first_text(payload, _FORM_ID_KEYS),
            answers=answers,
            created_at=_first_text(payload, ("created_at",)),
            ip=_first_text(payload, ("ip",)),
            extra={k: v for k, v in payload.items() if k != "answers"},
        )


def _first_text(payload: dict[str, Any], keys: Iterable[str]) -> str | None:
    for key in keys:
        value = payload.get(key)
        if value is None or isinstance(value, (dict, list)):
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def decode_webhook_body(raw_body: bytes, content_type: str | None) -> dict[str, Any]:
    """
    JSON bodies are the submission itself. Anything else is treated as a
    form post carrying the submission as JSON in the `rawRequest` field;
    top-level submissionID/formID form fields fill gaps in that JSON.
    """
    try:
        text = raw_body.decode("utf-8")
    except UnicodeDecodeError as e:
        raise PayloadError("Invalid payload format") from e

    try:
        if "application/json" in (content_type or "").lower():
            payload = json.loads(text)
        else:
            fields = parse_qs(text, keep_blank_values=True)
            payload = json.loads((fields.get("rawRequest") or ["{}"])[0] or "{}")
            if isinstance(payload, dict):
                for key in ("submissionID", "formID"):
                    if not payload.get(key) and fields.get(key):
                        payload[key] = fields[key][0]
    except json.JSONDecodeError as e:
        raise PayloadError("Invalid payload format") from e

    if not isinstance(payload, dict):
        raise PayloadError("Invalid payload format")
    return payload


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: str | None, secret: str | None) -> bool:
    """HMAC-SHA256 over the exact request bytes, compared in constant time."""
    if not signature or not secret:
        return False
    expected = compute_signature(raw_body, secret)
    return hmac.compare_digest(expected, signature.strip().lower())


def is_allowed_sender(ip: str, allowlist: Iterable[str], *, development: bool = False) -> bool:
    if development:
        return True
    return ip in set(allowlist)
