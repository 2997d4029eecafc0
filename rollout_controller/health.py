import asyncio

import httpx

from .models import HealthResult
from .logger import get_logger


class HealthProber:
    """Bounded-retry HTTP health check against a single target.

    A failed probe is a normal outcome and is reported through the
    returned HealthResult; it never raises.
    """

    def __init__(self, transport=None, sleep=asyncio.sleep):
        # transport lets tests plug in httpx.MockTransport
        self.transport = transport
        self.sleep = sleep
        self.logger = get_logger("health")

    async def _attempt(self, client, target, timeout):
        response = await client.get(target.health_endpoint, timeout=timeout)
        if response.is_success:
            return None
        return f"HTTP {response.status_code}"

    async def probe(self, target, timeout, max_attempts, backoff):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        last_error = None
        async with httpx.AsyncClient(transport=self.transport) as client:
            for attempt in range(1, max_attempts + 1):
                try:
                    last_error = await self._attempt(client, target, timeout)
                except (httpx.HTTPError, httpx.InvalidURL) as e:
                    last_error = f"{type(e).__name__}: {e}" if str(e) else type(e).__name__

                if last_error is None:
                    self.logger.info(f"Health check passed for {target.target_id} (attempt {attempt}/{max_attempts})")
                    return HealthResult(target.target_id, True, attempt)

                self.logger.warning(
                    f"Health check failed for {target.target_id} (attempt {attempt}/{max_attempts}): {last_error}"
                )
                if attempt < max_attempts:
                    await self.sleep(backoff)

        self.logger.warning(f"Health checks failed for {target.target_id} after {max_attempts} attempts")
        return HealthResult(target.target_id, False, max_attempts, last_error)

    async def probe_with(self, target, settings):
        return await self.probe(target, settings.timeout_s, settings.max_attempts, settings.backoff_s)
