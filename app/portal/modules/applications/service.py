from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from flask import Flask
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from werkzeug.security import generate_password_hash

from app.portal.audit import record_event
from app.portal.db import session_scope
from app.portal.models import Role, User
from app.portal.modules.applications.dedup import SubmissionCache
from app.portal.modules.applications.field_mapping import (
    FIELD_MAPPING,
    extract_document_references,
    map_submission_to_record,
)
from app.portal.modules.applications.models import Agent, Application, ApplicationDocument, WebhookLog
from app.portal.modules.applications.parsers import (
    PayloadError,
    Submission,
    decode_webhook_body,
    is_allowed_sender,
    verify_signature,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class WebhookError(Exception):
    """A webhook request that ends before an application is stored."""

    status_code = 500
    event_type = "error"
    response_key = "error"

    def __init__(self, message: str, *, submission_id: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.submission_id = submission_id
        self.details = details if details is not None else {"reason": message}

    def response_body(self) -> dict[str, Any]:
        return {self.response_key: self.message}


class AuthorizationError(WebhookError):
    status_code = 403


class AuthenticationError(WebhookError):
    status_code = 401


class MalformedInputError(WebhookError):
    status_code = 400


class DuplicateError(WebhookError):
    """Already ingested; answered as success so the sender stops retrying."""

    status_code = 200
    event_type = "duplicate"
    response_key = "message"


class DuplicateEmailError(DuplicateError):
    status_code = 409
    event_type = "error"
    response_key = "error"


class PersistenceError(WebhookError):
    status_code = 500


class ReviewError(ValueError):
    pass


@dataclass(frozen=True)
class WebhookRequest:
    raw_body: bytes
    content_type: str | None
    signature: str | None
    client_ip: str


@dataclass(frozen=True)
class IngestResult:
    application_id: int
    email: str | None
    full_name: str | None
    documents_stored: int

    def log_details(self) -> dict[str, Any]:
        return {
            "application_id": self.application_id,
            "email": self.email,
            "name": self.full_name,
            "documents": self.documents_stored,
        }


# ---------------------------------------------------------------------------
# Activity log
# ---------------------------------------------------------------------------


def log_webhook_activity(app: Flask, event_type: str, submission_id: str | None, details: dict[str, Any] | None) -> None:
    """
    Append one webhook_logs row in its own transaction. Failures are traced
    and swallowed so they never replace the response being sent.
    """
    try:
        with session_scope(app) as s:
            s.add(
                WebhookLog(
                    webhook_type="jotform",
                    event_type=event_type,
                    submission_id=submission_id,
                    details_json=json.dumps(details, sort_keys=True, default=str) if details is not None else None,
                )
            )
    except Exception:
        logger.exception("Error logging webhook activity (event=%s submission_id=%s)", event_type, submission_id)


# ---------------------------------------------------------------------------
# Pipeline steps
# ---------------------------------------------------------------------------


def authenticate_request(
    req: WebhookRequest,
    *,
    secret: str | None,
    allowed_ips: list[str] | tuple[str, ...],
    development: bool,
) -> None:
    if not is_allowed_sender(req.client_ip, allowed_ips, development=development):
        raise AuthorizationError("Unauthorized IP address", details={"reason": "IP not allowed", "ip": req.client_ip})
    if not verify_signature(req.raw_body, req.signature, secret):
        raise AuthenticationError(
            "Invalid signature",
            details={"reason": "Invalid signature", "ip": req.client_ip, "signature_present": bool(req.signature)},
        )


def parse_submission(req: WebhookRequest) -> Submission:
    try:
        payload = decode_webhook_body(req.raw_body, req.content_type)
    except PayloadError as e:
        raise MalformedInputError("Invalid payload format", details={"reason": str(e), "content_type": req.content_type})
    try:
        return Submission.from_payload(payload)
    except PayloadError:
        raise MalformedInputError("Missing required fields", details={"reason": "Missing submissionID or answers"})


def _find_by_submission_id(s: Session, submission_id: str) -> int | None:
    row = s.query(Application.id).filter(Application.jotform_submission_id == submission_id).first()
    return row[0] if row else None


def _find_by_email(s: Session, email: str) -> int | None:
    row = s.query(Application.id).filter(Application.email == email).first()
    return row[0] if row else None


def _insert_application(s: Session, record: dict[str, Any], cache: SubmissionCache) -> Application:
    sid = record["jotform_submission_id"]
    values = dict(record)
    values["created_at"] = datetime.fromisoformat(record["created_at"])
    application = Application(**values)
    try:
        s.add(application)
        s.commit()
    except IntegrityError as e:
        s.rollback()
        # A concurrent delivery of the same submission (or email) won the race.
        existing_id = _find_by_submission_id(s, sid)
        if existing_id is not None:
            cache.add(sid)
            raise DuplicateError(
                "Submission already exists",
                submission_id=sid,
                details={"reason": "Already in database", "application_id": existing_id},
            )
        email = record.get("email")
        if email and _find_by_email(s, email) is not None:
            raise DuplicateEmailError(
                "Email already exists in applications",
                submission_id=sid,
                details={"reason": "Duplicate email", "email": email},
            )
        raise PersistenceError(
            "Failed to store application",
            submission_id=sid,
            details={"error": str(e.orig), "fields": sorted(record)},
        )
    except SQLAlchemyError as e:
        s.rollback()
        raise PersistenceError(
            "Failed to store application",
            submission_id=sid,
            details={"error": str(e), "fields": sorted(record)},
        )
    return application


def _store_documents(s: Session, application: Application, submission: Submission, *, now: datetime) -> int:
    refs = extract_document_references(submission.submission_id, submission.answers, created_at=now)
    if not refs:
        return 0
    try:
        s.add_all(
            [
                ApplicationDocument(
                    application_id=application.id,
                    submission_id=ref.submission_id,
                    field_name=ref.field_name[:255],
                    file_url=ref.file_url,
                    document_type=ref.document_type,
                    created_at=now,
                )
                for ref in refs
            ]
        )
        s.commit()
    except SQLAlchemyError:
        # The application row is already committed; documents can be re-linked by hand.
        s.rollback()
        logger.exception(
            "Error storing document references (submission_id=%s application_id=%s)",
            submission.submission_id,
            application.id,
        )
        return 0
    return len(refs)


def ingest_submission(
    s: Session,
    submission: Submission,
    cache: SubmissionCache,
    *,
    now: datetime | None = None,
) -> IngestResult:
    now = now or datetime.utcnow()
    sid = submission.submission_id

    if sid in cache:
        raise DuplicateError("Submission already processed", submission_id=sid, details={"reason": "Already processed"})

    existing_id = _find_by_submission_id(s, sid)
    if existing_id is not None:
        cache.add(sid)
        raise DuplicateError(
            "Submission already exists",
            submission_id=sid,
            details={"reason": "Already in database", "application_id": existing_id},
        )

    record = map_submission_to_record(submission, received_at=now)

    email = record.get("email")
    if email and _find_by_email(s, email) is not None:
        # Not cached: a redelivery re-runs the pipeline and lands here again.
        raise DuplicateEmailError(
            "Email already exists in applications",
            submission_id=sid,
            details={"reason": "Duplicate email", "email": email},
        )

    application = _insert_application(s, record, cache)
    stored = _store_documents(s, application, submission, now=now)

    cache.add(sid)
    return IngestResult(
        application_id=application.id,
        email=application.email,
        full_name=application.full_name,
        documents_stored=stored,
    )


def process_webhook(
    app: Flask,
    s: Session,
    req: WebhookRequest,
    cache: SubmissionCache,
    *,
    development: bool = False,
) -> tuple[int, dict[str, Any]]:
    """
    Run one delivery through the whole pipeline and return (status, body).
    Exactly one webhook_logs row is written per call, whatever the outcome.
    """
    submission_id: str | None = None
    try:
        authenticate_request(
            req,
            secret=app.config.get("JOTFORM_WEBHOOK_SECRET"),
            allowed_ips=app.config.get("JOTFORM_ALLOWED_IPS") or [],
            development=development,
        )
        submission = parse_submission(req)
        submission_id = submission.submission_id
        result = ingest_submission(s, submission, cache)
    except WebhookError as e:
        if isinstance(e, DuplicateError) and e.status_code == 200:
            logger.info("Duplicate submission ignored: %s (%s)", e.submission_id, e.message)
        elif e.status_code >= 500:
            logger.error("Webhook persistence failure: submission_id=%s details=%s", e.submission_id, e.details)
        else:
            logger.warning("Webhook rejected (%s): %s ip=%s", e.status_code, e.message, req.client_ip)
        log_webhook_activity(app, e.event_type, e.submission_id, e.details)
        return e.status_code, e.response_body()
    except Exception as e:
        logger.exception("Webhook processing error (submission_id=%s)", submission_id)
        s.rollback()
        log_webhook_activity(app, "error", submission_id, {"error": "Internal server error", "type": type(e).__name__})
        return 500, {"error": "Internal server error"}

    log_webhook_activity(app, "success", submission_id, result.log_details())
    logger.info("Processed application %s for %s", result.application_id, result.email)
    return 200, {"message": "Application processed successfully", "application_id": result.application_id}


# ---------------------------------------------------------------------------
# Review (admin)
# ---------------------------------------------------------------------------

_REVIEW_ACTIONS = {"approve": "APPROVED", "reject": "REJECTED"}
CONSULTANT_ROLE = "consultant"
DEFAULT_AGENT_COUNTRY = "Malaysia"


@dataclass(frozen=True)
class ReviewOutcome:
    application: Application
    agent: Agent | None = None
    temporary_password: str | None = None


def temporary_password() -> str:
    """Random password that already satisfies the password policy."""
    return f"Temp{secrets.token_hex(4)}{secrets.randbelow(10)}!"


def _new_agent_id(s: Session) -> str:
    while True:
        candidate = f"AGT{secrets.randbelow(10**6):06d}"
        if s.query(Agent.id).filter(Agent.agent_id == candidate).first() is None:
            return candidate


def _split_city_country(value: str | None) -> tuple[str | None, str]:
    parts = [p.strip() for p in (value or "").split(",")]
    city = parts[0] or None
    country = parts[1] if len(parts) > 1 and parts[1] else DEFAULT_AGENT_COUNTRY
    return city, country


def provision_consultant(s: Session, application: Application) -> tuple[Agent, str]:
    """
    Create the consultant login (forced password change on first sign-in)
    and the agent record for an approved application. Caller commits.
    """
    email = (application.email or "").strip().lower()
    if not email:
        raise ReviewError("Application has no email address; cannot create an account.")
    if s.query(User.id).filter(User.email == email).first() is not None:
        raise ReviewError("An account with this email already exists.")
    role = s.query(Role).filter(Role.key == CONSULTANT_ROLE).one_or_none()
    if role is None:
        raise ReviewError(f"Role {CONSULTANT_ROLE!r} is not set up; run scripts/init_db.py.")

    password = temporary_password()
    user = User(
        email=email,
        full_name=application.full_name,
        password_hash=generate_password_hash(password),
        is_active=True,
        must_change_password=True,
    )
    user.roles.append(role)
    s.add(user)
    s.flush()

    city, country = _split_city_country(application.city_country)
    agent = Agent(
        agent_id=_new_agent_id(s),
        user=user,
        application_id=application.id,
        nric=application.nric,
        date_of_birth=application.date_of_birth,
        address=application.address,
        postcode=application.postcode,
        city=city,
        country=country,
        contact_number=application.contact_number,
        introducer_name=application.introducer_name,
        introducer_id=application.introducer_id,
        bank_name=application.bank_name,
        account_number=application.account_number,
    )
    s.add(agent)
    s.flush()
    return agent, password


def review_application(
    s: Session,
    application: Application,
    *,
    action: str,
    actor: User,
    notes: str | None = None,
) -> ReviewOutcome:
    """
    PENDING -> APPROVED | REJECTED. Approval also provisions the consultant
    account and agent record. Caller commits.
    """
    target = _REVIEW_ACTIONS.get(action)
    if target is None:
        raise ReviewError(f"Unknown review action: {action!r}")
    if application.application_status != "PENDING":
        raise ReviewError(f"Application is already {application.application_status}.")

    agent: Agent | None = None
    password: str | None = None
    if target == "APPROVED":
        agent, password = provision_consultant(s, application)
        application.invite_sent = True

    before = application.application_status
    application.application_status = target
    application.reviewed_at = datetime.utcnow()
    application.reviewed_by_user_id = actor.id
    application.review_notes = notes or None

    metadata: dict[str, Any] = {
        "submission_id": application.jotform_submission_id,
        "before": before,
        "after": target,
    }
    if agent is not None:
        metadata["agent_id"] = agent.agent_id
        metadata["consultant_user_id"] = agent.user_id
    record_event(
        s,
        actor=actor,
        action=f"application.{action}",
        entity_type="Application",
        entity_id=str(application.id),
        reason=notes,
        metadata=metadata,
    )
    return ReviewOutcome(application=application, agent=agent, temporary_password=password)


def application_to_dict(application: Application, *, include_details: bool = False) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": application.id,
        "jotform_submission_id": application.jotform_submission_id,
        "jotform_form_id": application.jotform_form_id,
        "full_name": application.full_name,
        "email": application.email,
        "application_status": application.application_status,
        "kyc_status": application.kyc_status,
        "created_at": application.created_at.isoformat() if application.created_at else None,
    }
    if include_details:
        for field_name in FIELD_MAPPING:
            data[field_name] = getattr(application, field_name)
        data["reviewed_at"] = application.reviewed_at.isoformat() if application.reviewed_at else None
        data["reviewed_by_user_id"] = application.reviewed_by_user_id
        data["review_notes"] = application.review_notes
        data["invite_sent"] = application.invite_sent
        data["documents"] = [
            {
                "id": d.id,
                "field_name": d.field_name,
                "file_url": d.file_url,
                "document_type": d.document_type,
                "created_at": d.created_at.isoformat() if d.created_at else None,
            }
            for d in application.documents
        ]
    return data
