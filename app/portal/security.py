from __future__ import annotations

import re
import secrets
from collections.abc import Iterable

from flask import Request, Response, session

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Content-Security-Policy": (
        "default-src 'self'; script-src 'self'; style-src 'self' 'unsafe-inline'; "
        "img-src 'self' data: https:; font-src 'self' data:; connect-src 'self'"
    ),
}

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_SPECIAL_CHARS_RE = re.compile(r"[!@#$%^&*()_.,?\":{}|<>\-+=\[\]]")


def ensure_csrf_token() -> str:
    """Ensure a CSRF token exists in the session and return it."""
    token = session.get("csrf_token")
    if not token:
        token = secrets.token_urlsafe(32)
        session["csrf_token"] = token
    return token


def validate_csrf(req: Request) -> bool:
    """Validate CSRF token from header, form, or JSON body."""
    token = req.headers.get("X-CSRF-Token") or req.form.get("csrf_token")
    if not token and req.is_json:
        json_data = req.get_json(silent=True) or {}
        if isinstance(json_data, dict):
            token = json_data.get("csrf_token")
    expected = session.get("csrf_token")
    return bool(token and expected and secrets.compare_digest(str(token), str(expected)))


def forwarded_client_ip(req: Request) -> str:
    """
    Caller address as reported by the proxy chain: first X-Forwarded-For
    entry, then X-Real-IP, else "unknown".
    """
    forwarded = (req.headers.get("X-Forwarded-For") or "").strip()
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = (req.headers.get("X-Real-IP") or "").strip()
    return real_ip or "unknown"


def client_ip(req: Request) -> str:
    """Like forwarded_client_ip(), falling back to the socket peer address."""
    ip = forwarded_client_ip(req)
    if ip != "unknown":
        return ip
    return req.remote_addr or "unknown"


def is_ip_allowed(ip: str, allowlist: Iterable[str]) -> bool:
    """An empty allowlist means no restriction."""
    allowed = [a for a in allowlist if a]
    if not allowed:
        return True
    return ip in allowed


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email or "")) and len(email) <= 254


def password_policy_errors(password: str) -> list[str]:
    errors: list[str] = []
    if len(password) < 8:
        errors.append("Password must be at least 8 characters long.")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter.")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter.")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one number.")
    if not _SPECIAL_CHARS_RE.search(password):
        errors.append("Password must contain at least one special character.")
    return errors


def apply_security_headers(response: Response) -> Response:
    for key, value in SECURITY_HEADERS.items():
        response.headers.setdefault(key, value)
    return response
