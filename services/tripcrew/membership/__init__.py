"""
Event membership: invitations, direct joins, join requests, roles and QR
identity payloads.

Usage:
    from services.tripcrew.membership import MembershipEngine
"""

from __future__ import annotations

from services.tripcrew.membership.engine import (
    JoinRequestOutcome,
    MembershipEngine,
    MembershipOutcome,
    QRCodeView,
)
from services.tripcrew.membership.qr import QRPayload, parse_scanned, render_data_url

__all__ = [
    "JoinRequestOutcome",
    "MembershipEngine",
    "MembershipOutcome",
    "QRCodeView",
    "QRPayload",
    "parse_scanned",
    "render_data_url",
]
