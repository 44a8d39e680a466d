from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from app.portal.config import is_development
from app.portal.db import db_session
from app.portal.modules.applications.dedup import SubmissionCache
from app.portal.modules.applications.service import WebhookRequest, process_webhook
from app.portal.security import forwarded_client_ip

bp = Blueprint("webhooks", __name__)

SIGNATURE_HEADER = "X-Jotform-Signature"


def submission_cache() -> SubmissionCache:
    cache = current_app.extensions.get("jotform_submission_cache")
    if cache is None:
        cache = SubmissionCache(max_size=int(current_app.config.get("SUBMISSION_CACHE_SIZE") or 10000))
        current_app.extensions["jotform_submission_cache"] = cache
    return cache


@bp.post("/jotform")
def jotform_webhook():
    req = WebhookRequest(
        raw_body=request.get_data(cache=True),
        content_type=request.headers.get("Content-Type"),
        signature=request.headers.get(SIGNATURE_HEADER),
        client_ip=forwarded_client_ip(request),
    )
    status, body = process_webhook(
        current_app._get_current_object(),  # type: ignore[attr-defined]
        db_session(),
        req,
        submission_cache(),
        development=is_development(current_app.config.get("ENV")),
    )
    return jsonify(body), status


@bp.get("/jotform")
def jotform_webhook_info():
    return jsonify({"message": "Jotform webhook endpoint - POST only"}), 405
