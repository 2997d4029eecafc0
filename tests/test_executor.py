import asyncio
import pytest
from unittest.mock import patch
from rollout_controller.errors import DeployError
from rollout_controller.executor import CommandExecutor, SimulatedExecutor
from rollout_controller.failure import FailureInjector
from rollout_controller.models import RolloutConfig
from helpers import make_targets


class SlowExecutor(SimulatedExecutor):
    async def _apply(self, action, target, version):
        await asyncio.sleep(1)


class TestSimulatedExecutor:
    """Deploy/revert behavior of the simulated backend."""

    @pytest.mark.asyncio
    async def test_deploy_updates_version(self):
        target = make_targets(["a"])[0]
        executor = SimulatedExecutor()

        error = await executor.deploy(target, "v2")
        assert error is None
        assert target.current_version == "v2"
        assert executor.calls == [("deploy", "a", "v2")]

    @pytest.mark.asyncio
    async def test_failed_deploy_returns_error_and_keeps_version(self):
        target = make_targets(["a"])[0]
        executor = SimulatedExecutor(FailureInjector(fail_deploys={"a": 1}))

        error = await executor.deploy(target, "v2")
        assert isinstance(error, DeployError)
        assert error.target_id == "a"
        assert target.current_version == "v1"

    @pytest.mark.asyncio
    async def test_revert_failures_are_separate_from_deploy_failures(self):
        target = make_targets(["a"])[0]
        executor = SimulatedExecutor(FailureInjector(fail_reverts={"a": 1}))

        assert await executor.deploy(target, "v2") is None
        error = await executor.revert(target, "v1")
        assert isinstance(error, DeployError)
        assert target.current_version == "v2"

    @pytest.mark.asyncio
    async def test_retry_succeeds_after_transient_failure(self):
        target = make_targets(["a"])[0]
        executor = SimulatedExecutor(FailureInjector(fail_deploys={"a": 1}), retries=1, retry_base_delay_s=0.01)

        assert await executor.deploy(target, "v2") is None
        assert target.current_version == "v2"
        assert len(executor.calls) == 2

    @pytest.mark.asyncio
    async def test_retries_use_exponential_backoff(self):
        target = make_targets(["a"])[0]
        delays = []

        async def sleep(seconds):
            delays.append(seconds)

        executor = SimulatedExecutor(
            FailureInjector(fail_deploys={"a": 3}), retries=2, retry_base_delay_s=0.5, sleep=sleep
        )
        error = await executor.deploy(target, "v2")
        assert isinstance(error, DeployError)
        assert delays == [0.5, 1.0]
        assert len(executor.calls) == 3

    @pytest.mark.asyncio
    async def test_timeout_becomes_deploy_error(self):
        target = make_targets(["a"])[0]
        executor = SlowExecutor(timeout_s=0.05)

        error = await executor.deploy(target, "v2")
        assert isinstance(error, DeployError)
        assert "timed out" in error.reason
        assert target.current_version == "v1"

    @pytest.mark.asyncio
    async def test_unexpected_backend_error_becomes_deploy_error(self):
        target = make_targets(["a"])[0]

        class BrokenExecutor(SimulatedExecutor):
            async def _apply(self, action, target, version):
                raise KeyError("cluster")

        error = await BrokenExecutor().deploy(target, "v2")
        assert isinstance(error, DeployError)
        assert "cluster" in error.reason
        assert target.current_version == "v1"

    @pytest.mark.asyncio
    async def test_cancellation_is_not_swallowed(self):
        target = make_targets(["a"])[0]
        task = asyncio.ensure_future(SlowExecutor().deploy(target, "v2"))
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert target.current_version == "v1"

    def test_from_config(self):
        cfg = RolloutConfig(deploy_timeout_s=3.0, deploy_retries=2, deploy_retry_base_delay_s=0.2)
        executor = SimulatedExecutor.from_config(cfg)
        assert executor.timeout_s == 3.0
        assert executor.retries == 2
        assert executor.retry_base_delay_s == 0.2


class TestCommandExecutor:
    """Shell command backend tests."""

    def test_build_command_substitutes_placeholders(self):
        target = make_targets(["server-a"])[0]
        executor = CommandExecutor("kubectl set image deployment/{deployment} {target}=myapp:{version}", deployment="web")

        cmd = executor.build_command("deploy", target, "v2.0.0")
        assert cmd == ["kubectl", "set", "image", "deployment/web", "server-a=myapp:v2.0.0"]

    def test_revert_command_defaults_to_deploy_command(self):
        target = make_targets(["a"])[0]
        executor = CommandExecutor("deploy.sh {version}")
        assert executor.build_command("revert", target, "v1") == ["deploy.sh", "v1"]

    @pytest.mark.asyncio
    async def test_successful_command(self):
        target = make_targets(["a"])[0]
        executor = CommandExecutor("true {target} {version}")

        assert await executor.deploy(target, "v2") is None
        assert target.current_version == "v2"

    @pytest.mark.asyncio
    async def test_failing_command_returns_error(self):
        target = make_targets(["a"])[0]
        executor = CommandExecutor("false")

        error = await executor.deploy(target, "v2")
        assert isinstance(error, DeployError)
        assert "exited with 1" in error.reason
        assert target.current_version == "v1"

    @pytest.mark.asyncio
    async def test_missing_binary_returns_error(self):
        target = make_targets(["a"])[0]
        executor = CommandExecutor("definitely-not-a-real-binary-xyz {version}")

        error = await executor.deploy(target, "v2")
        assert isinstance(error, DeployError)

    @pytest.mark.asyncio
    async def test_bad_placeholder_returns_error(self):
        target = make_targets(["a"])[0]
        executor = CommandExecutor("deploy {image}")

        error = await executor.deploy(target, "v2")
        assert isinstance(error, DeployError)
        assert "placeholder" in error.reason

    @pytest.mark.asyncio
    async def test_timed_out_command_is_killed_and_reaped(self):
        target = make_targets(["a"])[0]
        executor = CommandExecutor("sleep 5", timeout_s=0.2)
        spawned = []
        real_exec = asyncio.create_subprocess_exec

        async def spawn(*args, **kwargs):
            proc = await real_exec(*args, **kwargs)
            spawned.append(proc)
            return proc

        with patch("asyncio.create_subprocess_exec", spawn):
            error = await executor.deploy(target, "v2")
        assert "timed out" in error.reason
        assert target.current_version == "v1"
        assert spawned[0].returncode is not None
