"""
Jotform answers -> application record.

Jotform forms are edited by non-developers, so question ids and names drift.
Each internal field lists candidate keys; for every candidate, in order, an
exact answer-id lookup is tried first, then a case-insensitive substring match
against answer names (first answer in payload order wins). The ordering is
part of the contract: reshuffling candidates changes which answer is picked.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

from app.portal.modules.applications.parsers import FILE_UPLOAD_TYPE, Submission

DECLARATION_FIELD = "declaration"

FIELD_MAPPING: dict[str, tuple[str, ...]] = {
    # Section A - personal details
    "full_name": ("3", "fullName", "name"),
    "email": ("4", "email", "emailAddress"),
    "nric": ("5", "nric", "ic", "identityCard"),
    "date_of_birth": ("6", "dateOfBirth", "dob", "birthDate"),
    "contact_number": ("7", "phone", "phoneNumber", "contactNumber"),
    "gender": ("8", "gender"),
    "address": ("9", "address", "homeAddress"),
    "postcode": ("10", "postcode", "postalCode"),
    "city_country": ("11", "city", "cityCountry", "location"),
    "status": ("12", "maritalStatus", "status"),
    # Section B - bank details
    "account_holder_name": ("13", "accountHolderName", "bankAccountName"),
    "bank_name": ("14", "bankName", "bank"),
    "account_number": ("15", "accountNumber", "bankAccountNumber"),
    # Section C - additional information
    "previous_experience": ("16", "experience", "previousExperience"),
    "currently_promoting": ("17", "currentlyPromoting", "otherCompanies"),
    "working_style": ("18", "workingStyle", "workPreference"),
    # Section D - beneficiary
    "beneficiary_full_name": ("19", "beneficiaryName", "emergencyContactName"),
    "beneficiary_nric": ("20", "beneficiaryNric", "beneficiaryIC"),
    "beneficiary_date_of_birth": ("21", "beneficiaryDob", "beneficiaryBirthDate"),
    "beneficiary_postcode": ("22", "beneficiaryPostcode"),
    "beneficiary_city_country": ("23", "beneficiaryCity", "beneficiaryLocation"),
    "beneficiary_relation": ("24", "relationship", "beneficiaryRelation"),
    "beneficiary_contact_number": ("25", "beneficiaryPhone", "emergencyPhone"),
    "beneficiary_email_address": ("26", "beneficiaryEmail"),
    "beneficiary_account_holder_name": ("27", "beneficiaryAccountName"),
    "beneficiary_bank_name": ("28", "beneficiaryBank"),
    "beneficiary_account_number": ("29", "beneficiaryAccountNumber"),
    # Section E - authorization
    "declaration": ("30", "declaration", "agreement", "terms"),
    "applicant_signature": ("31", "signature", "digitalSignature"),
    "signature_date": ("32", "signatureDate"),
    "signature_name": ("33", "signatureName"),
    # Referral
    "introducer_name": ("34", "introducerName", "referrerName"),
    "introducer_id": ("35", "introducerId", "referrerId"),
}

_DATE_FORMATS = (
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%m-%d-%Y",
    "%m/%d/%Y %H:%M",
    "%d %B %Y",
    "%d %b %Y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%B %d %Y",
)

DOCUMENT_TYPES = ("identity", "address", "bank", "agreement", "other")


@dataclass(frozen=True)
class DocumentReference:
    submission_id: str
    field_name: str
    file_url: str
    document_type: str
    created_at: str

    def as_dict(self) -> dict[str, str]:
        return asdict(self)


def _as_text(raw: Any) -> str | None:
    """Flatten a Jotform answer value to text; empty values become None."""
    if raw is None:
        return None
    if isinstance(raw, bool):
        return "true" if raw else "false"
    if isinstance(raw, dict):
        # Date widgets: {"day": "15", "month": "01", "year": "2024"}
        if all(str(raw.get(k) or "").strip().isdigit() for k in ("year", "month", "day")):
            return f"{int(raw['year']):04d}-{int(raw['month']):02d}-{int(raw['day']):02d}"
        parts = [_as_text(v) for v in raw.values()]
        joined = " ".join(p for p in parts if p)
        return joined or None
    if isinstance(raw, (list, tuple)):
        parts = [_as_text(v) for v in raw]
        joined = ", ".join(p for p in parts if p)
        return joined or None
    text = str(raw).strip()
    return text or None


def answer_value(answer: dict[str, Any]) -> str | None:
    """answer, then text, then prettyFormat; first non-empty wins."""
    for key in ("answer", "text", "prettyFormat"):
        value = _as_text(answer.get(key))
        if value is not None:
            return value
    return None


def extract_field_value(answers: dict[str, dict[str, Any]], candidate_keys: tuple[str, ...] | list[str]) -> str | None:
    for candidate in candidate_keys:
        exact = answers.get(candidate)
        if isinstance(exact, dict):
            value = answer_value(exact)
            if value is not None:
                return value

        needle = candidate.lower()
        for entry in answers.values():
            name = entry.get("name") if isinstance(entry, dict) else None
            if isinstance(name, str) and needle in name.lower():
                value = answer_value(entry)
                if value is not None:
                    return value
    return None


def coerce_declaration(raw: str) -> bool:
    lowered = raw.lower()
    return lowered in ("yes", "true") or raw == "1"


def normalize_date(raw: str) -> str:
    """Reduce a date-ish answer to YYYY-MM-DD; unparsable input is returned unchanged."""
    text = raw.strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    return raw


def format_timestamp(raw: str | None, *, default: datetime | None = None) -> str:
    """Jotform's "2024-01-15 10:30:00" (or any ISO form) as a naive-UTC ISO timestamp."""
    if raw:
        try:
            dt = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
            if dt.tzinfo is not None:
                dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
            return dt.isoformat(timespec="seconds")
        except ValueError:
            pass
    fallback = default or datetime.utcnow()
    return fallback.isoformat(timespec="seconds")


def map_submission_to_record(submission: Submission, *, received_at: datetime | None = None) -> dict[str, Any]:
    record: dict[str, Any] = {
        "jotform_submission_id": submission.submission_id,
        "jotform_form_id": submission.form_id,
        "application_status": "PENDING",
        "kyc_status": "PENDING",
        "created_at": format_timestamp(submission.created_at, default=received_at),
    }

    for field_name, candidates in FIELD_MAPPING.items():
        value = extract_field_value(submission.answers, candidates)
        if value is None:
            continue
        if field_name == DECLARATION_FIELD:
            record[field_name] = coerce_declaration(value)
        elif "date" in field_name:
            record[field_name] = normalize_date(value)
        else:
            record[field_name] = value
    return record


def classify_document(field_display_name: str | None) -> str:
    name = (field_display_name or "").lower()
    if "identity" in name or "ic" in name or "nric" in name:
        return "identity"
    if "address" in name or "utility" in name:
        return "address"
    if "bank" in name or "statement" in name:
        return "bank"
    if "agreement" in name or "contract" in name:
        return "agreement"
    return "other"


def _file_urls(raw: Any) -> list[str]:
    if isinstance(raw, (list, tuple)):
        return [u for u in (_as_text(v) for v in raw) if u]
    text = _as_text(raw)
    return [text] if text else []


def extract_document_references(
    submission_id: str,
    answers: dict[str, dict[str, Any]],
    *,
    created_at: datetime | None = None,
) -> list[DocumentReference]:
    stamp = (created_at or datetime.utcnow()).isoformat(timespec="seconds")
    refs: list[DocumentReference] = []
    for key, entry in answers.items():
        if not isinstance(entry, dict) or entry.get("type") != FILE_UPLOAD_TYPE:
            continue
        urls = _file_urls(entry.get("answer"))
        if not urls:
            continue
        name = entry.get("name")
        field_name = name if isinstance(name, str) and name.strip() else f"field_{key}"
        doc_type = classify_document(name if isinstance(name, str) else "")
        for url in urls:
            refs.append(
                DocumentReference(
                    submission_id=submission_id,
                    field_name=field_name,
                    file_url=url,
                    document_type=doc_type,
                    created_at=stamp,
                )
            )
    return refs
