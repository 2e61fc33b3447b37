"""Authentication dependencies for HTTP endpoints.

Two guards:
  - require_admin_token()       admin JSON API (Bearer token in Authorization header)
  - verify_twilio_signature()   Twilio webhook (X-Twilio-Signature header)

Admin behavior matrix:
  ADMIN_API_KEY set + valid token   → allow
  ADMIN_API_KEY set + wrong/missing → 401 Unauthorized
  ADMIN_API_KEY empty + DEBUG=true  → allow (local dev convenience)
  ADMIN_API_KEY empty + DEBUG=false → 403 Forbidden (locked in production)

Twilio signatures are checked against PUBLIC_BASE_URL + /twilio/webhook,
the URL Twilio was configured with, because the URL seen behind a proxy
differs.  With no auth token and DEBUG=true the check is skipped.
"""

from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from twilio.request_validator import RequestValidator

from rentbot.config import settings

log = logging.getLogger("rentbot.auth")

_bearer_scheme = HTTPBearer(auto_error=False)

TWILIO_WEBHOOK_PATH = "/twilio/webhook"


async def require_admin_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> None:
    """FastAPI dependency: protect admin endpoints with a bearer token."""
    key = settings.admin_api_key

    if not key:
        # No key configured
        if settings.debug:
            return  # Local dev, allow without auth
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin API key not configured. Set ADMIN_API_KEY in .env.",
        )

    if credentials is None or credentials.credentials != key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing admin token.",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def verify_twilio_signature(request: Request) -> None:
    """FastAPI dependency: reject webhook calls not signed by Twilio."""
    token = settings.twilio_auth_token

    if not token:
        if settings.debug:
            return
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Twilio auth token not configured.",
        )

    signature = request.headers.get("X-Twilio-Signature", "")
    form = await request.form()
    url = settings.public_base_url.rstrip("/") + TWILIO_WEBHOOK_PATH
    if not signature or not RequestValidator(token).validate(url, dict(form), signature):
        log.warning("Rejected Twilio webhook with invalid signature")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Twilio signature.",
        )
