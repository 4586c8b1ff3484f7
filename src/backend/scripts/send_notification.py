#!/usr/bin/env python3
"""Send a test push notification through the fan-out engine.

Run from the backend directory:
    python scripts/send_notification.py TOKEN [TOKEN ...]

Gateway credentials and retry tuning come from FANOUT_* environment variables.
"""

import asyncio
import os
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from fanout.core.logging import configure_logging
from fanout.services.delivery.engine import DeliveryEngine
from fanout.services.delivery.errors import DeliveryError

TITLE = os.getenv("NOTIFICATION_TITLE", "Test notification")
BODY = os.getenv("NOTIFICATION_BODY", "Sent from send_notification.py")


async def send(tokens: list[str]) -> int:
    configure_logging()
    engine = DeliveryEngine.from_settings()

    try:
        result = await engine.send_multicast_notification(tokens, TITLE, BODY, {"source": "cli"})
    except DeliveryError as e:
        print(f"Delivery failed: {e}")
        return 1

    print(f"Sent: {result.success_count}  Failed: {result.failure_count}  ({result.status.value})")
    return 0 if result.failure_count == 0 else 2


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)
    sys.exit(asyncio.run(send(sys.argv[1:])))
