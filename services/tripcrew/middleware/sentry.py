"""
Sentry instrumentation. No-op unless SENTRY_DSN is set.

Caller identity and contact details never leave the process: the forwarded
X-User-Id header is filtered, and phone numbers in request bodies are masked.
"""

from typing import Any

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from services.tripcrew.config import settings

SENSITIVE_HEADERS = {"authorization", "cookie", "set-cookie", "x-user-id"}
SENSITIVE_FIELDS = {"phone", "qrData", "qrCode"}
FILTERED = "[FILTERED]"


def _filter_headers(headers: Any) -> None:
    if not isinstance(headers, dict):
        return
    for key in list(headers.keys()):
        if key.lower() in SENSITIVE_HEADERS:
            headers[key] = FILTERED


def scrub_event(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any] | None:
    """before_send hook."""
    for breadcrumb in event.get("breadcrumbs", {}).get("values", []):
        data = breadcrumb.get("data")
        if isinstance(data, dict):
            _filter_headers(data.get("headers"))

    request = event.get("request")
    if isinstance(request, dict):
        _filter_headers(request.get("headers"))
        body = request.get("data")
        if isinstance(body, dict):
            for key in SENSITIVE_FIELDS & body.keys():
                body[key] = FILTERED
    return event


def setup_sentry() -> None:
    if not settings.sentry_dsn:
        return

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        release=f"{settings.app_name}@{settings.app_version}",
        traces_sample_rate=settings.sentry_traces_sample_rate,
        before_send=scrub_event,
        integrations=[
            StarletteIntegration(transaction_style="endpoint"),
            FastApiIntegration(transaction_style="endpoint"),
        ],
        send_default_pii=False,
    )
