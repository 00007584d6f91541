"""
Unit tests: Sentry before_send scrubbing.
"""

from services.tripcrew.middleware.sentry import FILTERED, scrub_event


def test_identity_headers_filtered():
    event = {
        "request": {
            "headers": {"X-User-Id": "9", "Authorization": "Bearer abc", "Accept": "application/json"},
        }
    }

    scrubbed = scrub_event(event, {})

    headers = scrubbed["request"]["headers"]
    assert headers["X-User-Id"] == FILTERED
    assert headers["Authorization"] == FILTERED
    assert headers["Accept"] == "application/json"


def test_phone_and_qr_payload_masked():
    event = {"request": {"data": {"phone": "+15550001", "qrData": "{...}", "role": "member"}}}

    body = scrub_event(event, {})["request"]["data"]

    assert body == {"phone": FILTERED, "qrData": FILTERED, "role": "member"}


def test_breadcrumb_headers_filtered():
    event = {"breadcrumbs": {"values": [{"data": {"headers": {"cookie": "session=1"}}}]}}
    scrubbed = scrub_event(event, {})
    assert scrubbed["breadcrumbs"]["values"][0]["data"]["headers"]["cookie"] == FILTERED


def test_event_without_request_passes_through():
    event = {"message": "boom"}
    assert scrub_event(event, {}) == {"message": "boom"}
