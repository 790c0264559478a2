import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class AlertNotifier:
    """
    Posts operational alerts to a webhook.

    Delivery is best effort: a failed post is logged and never changes the
    outcome of the request that raised the alert.
    """

    def __init__(self, webhook_url: Optional[str], timeout: float = 5.0):
        self.webhook_url = webhook_url
        self.timeout = timeout

    async def notify(self, payload: Dict[str, Any]) -> bool:
        if not self.webhook_url:
            logger.debug(f"No alert webhook configured, dropping alert {payload.get('type')}")
            return False
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.webhook_url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to send userbase alert: {e}")
            return False
        return True
