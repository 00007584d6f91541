"""
Run a single notification sweep cycle from cron or by hand.

The API process runs the same sweep on a timer; this entry point is for
deployments that disable it (NOTIFICATION_SWEEP_ENABLED=false) and schedule
it externally, and for replaying a cycle at a given instant.

Live pushes reach connected sockets only when SOCKETIO_MESSAGE_QUEUE points
at the Redis instance the API's socket server uses. Without it the rows are
still persisted and clients see them through GET /notifications.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import datetime
from typing import Any, Optional

from services.tripcrew.config import settings
from services.tripcrew.db.engine import standalone_session
from services.tripcrew.notifications.sweep import NotificationSweep, SweepResult
from services.tripcrew.realtime.relay import SocketIORelay, create_external_emitter

logger = logging.getLogger(__name__)


class _NoLivePush:
    async def push_to_user(self, user_id: int, event: str, payload: dict[str, Any]) -> None:
        logger.debug("push_skipped user=%s event=%s", user_id, event)


async def run_once(at: Optional[datetime] = None) -> SweepResult:
    if settings.socketio_message_queue:
        push = SocketIORelay(create_external_emitter(settings.socketio_message_queue))
    else:
        push = _NoLivePush()
    sweep = NotificationSweep(standalone_session, push)
    return await sweep.tick(now=at)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run one step-reminder sweep cycle.")
    parser.add_argument(
        "--at",
        type=datetime.fromisoformat,
        default=None,
        help="Evaluate alert windows at this ISO-8601 instant instead of now.",
    )
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    result = asyncio.run(run_once(args.at))
    print(
        f"sweep at={result.now.isoformat()} due={result.steps_due} created={result.created} "
        f"existing={result.already_notified} push_failures={result.push_failures} "
        f"failed={result.failed}"
    )
    raise SystemExit(1 if result.failed else 0)


if __name__ == "__main__":
    main()
