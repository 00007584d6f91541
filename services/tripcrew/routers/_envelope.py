"""Success envelope shared by every router: {"success", "data", "requestId"}."""

import uuid
from typing import Any

from fastapi import Request


def request_id_of(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


def ok(request: Request, data: Any) -> dict:
    return {"success": True, "data": data, "requestId": request_id_of(request)}
