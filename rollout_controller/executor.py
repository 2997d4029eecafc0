import asyncio
import shlex

from .errors import DeployError
from .failure import FailureInjector
from .logger import get_logger


class DeploymentExecutor:
    """Applies a version to one target.

    ``deploy`` and ``revert`` never raise for infrastructure failures: they
    return ``None`` on success or a DeployError describing what went wrong.
    Subclasses implement ``_apply``. Health is not checked here.
    """

    def __init__(self, timeout_s=None, retries=0, retry_base_delay_s=0.1, sleep=asyncio.sleep):
        self.timeout_s = timeout_s
        self.retries = retries
        self.retry_base_delay_s = retry_base_delay_s
        self.sleep = sleep
        self.logger = get_logger("executor")

    @classmethod
    def from_config(cls, config, **kwargs):
        return cls(
            timeout_s=config.deploy_timeout_s,
            retries=config.deploy_retries,
            retry_base_delay_s=config.deploy_retry_base_delay_s,
            **kwargs,
        )

    async def _apply(self, action, target, version):
        raise NotImplementedError

    async def deploy(self, target, version):
        return await self._run("deploy", target, version)

    async def revert(self, target, to_version):
        return await self._run("revert", target, to_version)

    async def _run(self, action, target, version):
        """Run one action with retries and timeout handling"""
        max_attempts = max(1, self.retries + 1)  # +1 because we count initial attempt

        for attempt in range(1, max_attempts + 1):
            error = await self._attempt(action, target, version)
            if error is None:
                target.current_version = version
                self.logger.info(f"{action} of {target.target_id} to {version} succeeded")
                return None

            self.logger.warning(f"{action} attempt {attempt} failed for {target.target_id}: {error.reason}")
            if attempt < max_attempts:
                backoff_time = min((2 ** (attempt - 1)) * self.retry_base_delay_s, 30.0)
                self.logger.info(f"Retrying in {backoff_time} seconds...")
                await self.sleep(backoff_time)

        self.logger.error(f"{action} of {target.target_id} failed after {max_attempts} attempts")
        return error

    async def _attempt(self, action, target, version):
        try:
            if self.timeout_s and self.timeout_s > 0:
                await asyncio.wait_for(self._apply(action, target, version), timeout=self.timeout_s)
            else:
                await self._apply(action, target, version)
        except asyncio.TimeoutError:
            return DeployError(target.target_id, f"{action} timed out after {self.timeout_s}s")
        except DeployError as e:
            return e
        except Exception as e:
            # CancelledError is a BaseException and still propagates
            return DeployError(target.target_id, str(e) or type(e).__name__)
        return None


class SimulatedExecutor(DeploymentExecutor):
    """In-process backend that only changes the recorded version"""

    def __init__(self, failure_injector=None, **kwargs):
        super().__init__(**kwargs)
        self.failure_injector = failure_injector if failure_injector else FailureInjector()
        self.calls = []

    async def _apply(self, action, target, version):
        self.calls.append((action, target.target_id, version))

        # Add some delay to simulate real deployment work
        delay = self.failure_injector.delay_seconds()
        if delay > 0:
            await asyncio.sleep(delay)

        if action == "deploy":
            failing = self.failure_injector.should_fail_deploy(target)
        else:
            failing = self.failure_injector.should_fail_revert(target)
        if failing:
            raise DeployError(target.target_id, f"simulated {action} failure")


class CommandExecutor(DeploymentExecutor):
    """Runs a shell command template per target, e.g.

        kubectl set image deployment/{deployment} {target}=myapp:{version}

    Placeholders: ``{target}``, ``{version}``, ``{deployment}``. A non-zero
    exit status is reported as a DeployError carrying the stderr tail.
    """

    def __init__(self, deploy_command, revert_command=None, deployment="app", **kwargs):
        super().__init__(**kwargs)
        self.deploy_command = deploy_command
        self.revert_command = revert_command or deploy_command
        self.deployment = deployment

    def build_command(self, action, target, version):
        template = self.deploy_command if action == "deploy" else self.revert_command
        try:
            rendered = template.format(target=target.target_id, version=version, deployment=self.deployment)
        except (KeyError, IndexError) as e:
            raise ValueError(f"bad placeholder {e} in {action} command template") from e
        return shlex.split(rendered)

    async def _apply(self, action, target, version):
        cmd = self.build_command(action, target, version)
        self.logger.debug(f"+ {' '.join(cmd)}")
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await proc.communicate()
        finally:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
        if proc.returncode != 0:
            tail = stderr.decode(errors="ignore").strip().splitlines()[-1:] or [""]
            raise DeployError(target.target_id, f"'{cmd[0]}' exited with {proc.returncode} {tail[0]}".strip())
