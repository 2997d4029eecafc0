import asyncio

import httpx

from rollout_controller.executor import SimulatedExecutor
from rollout_controller.health import HealthProber
from rollout_controller.models import ProbeSettings, RolloutConfig, Target

FAST_PROBE = ProbeSettings(timeout_s=1.0, max_attempts=2, backoff_s=0.0)


def make_targets(names, version="v1"):
    return [Target(name, version, f"http://{name}/health") for name in names]


def fast_config(batch_size=2, **kwargs):
    kwargs.setdefault("probe", FAST_PROBE)
    return RolloutConfig(batch_size=batch_size, **kwargs)


class FakeCluster:
    """Serves health checks for a set of targets.

    A target answers 503 while it runs the version listed for it in
    ``broken`` ("*" means always) and refuses connections if in ``down``.
    """

    def __init__(self, targets, broken=None, down=None):
        self.targets = {t.target_id: t for t in targets}
        self.broken = dict(broken or {})
        self.down = set(down or ())
        self.requests = []

    def handler(self, request):
        host = request.url.host
        self.requests.append(host)
        if host in self.down:
            raise httpx.ConnectError("connection refused", request=request)
        target = self.targets[host]
        bad = self.broken.get(host)
        if bad is not None and (bad == "*" or bad == target.current_version):
            return httpx.Response(503, json={"status": "unhealthy"})
        return httpx.Response(200, json={"status": "ok", "version": target.current_version})

    def prober(self, **kwargs):
        return HealthProber(transport=httpx.MockTransport(self.handler), **kwargs)

    def probes_of(self, target_id):
        return self.requests.count(target_id)


class TrackingExecutor(SimulatedExecutor):
    """Simulated executor that records how many deploys overlap"""

    def __init__(self, delay=0.01, **kwargs):
        super().__init__(**kwargs)
        self.delay = delay
        self.running = 0
        self.max_running = 0
        self.order = []

    async def _apply(self, action, target, version):
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        self.order.append((action, target.target_id))
        try:
            await asyncio.sleep(self.delay)
            await super()._apply(action, target, version)
        finally:
            self.running -= 1
