"""
QR identity payloads for event memberships.

A payload binds a scan to exactly one membership row:

    {"eventId": 12, "userId": 7, "memberId": 40}

The JSON text is rendered into a PNG QR image and stored on the membership
as a ``data:image/png;base64,...`` URL. Scanners decode the image back to the
JSON text and post it to the check-in ledger, which calls parse_scanned().

The stored value is regenerated on every activation so it always carries the
current memberId. Between row creation and the payload update the stored
value is empty; consumers treat that as "not ready yet", never as an error.
"""

from __future__ import annotations

import base64
import io
import json
from typing import Any, Optional

import qrcode
from pydantic import BaseModel, ConfigDict, StrictInt, ValidationError
from qrcode.image.pure import PyPNGImage

from services.tripcrew.config import settings
from services.tripcrew.errors import InvalidPayload

DATA_URL_PREFIX = "data:image/png;base64,"


class QRPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    eventId: StrictInt
    userId: StrictInt
    memberId: StrictInt

    def to_json(self) -> str:
        return json.dumps(
            {"eventId": self.eventId, "userId": self.userId, "memberId": self.memberId},
            separators=(",", ":"),
        )


def render_data_url(payload: QRPayload) -> str:
    """Render the payload JSON as a PNG QR code, returned as a data URL."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=settings.qr_box_size,
        border=settings.qr_border,
        image_factory=PyPNGImage,
    )
    qr.add_data(payload.to_json())
    qr.make(fit=True)

    buffer = io.BytesIO()
    qr.make_image().save(buffer)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"{DATA_URL_PREFIX}{encoded}"


def parse_scanned(raw: Any) -> QRPayload:
    """
    Parse the text a scanner decoded from a member's QR image.

    Accepts the JSON string (what scanners produce) or an already-decoded
    mapping. Raises InvalidPayload for anything that does not carry integer
    eventId, userId and memberId fields.
    """
    data = raw
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            raise InvalidPayload()

    if not isinstance(data, dict):
        raise InvalidPayload()

    try:
        return QRPayload.model_validate(data)
    except ValidationError:
        raise InvalidPayload()


def is_ready(qr_code: Optional[str]) -> bool:
    return bool(qr_code)
