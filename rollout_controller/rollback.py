import asyncio

from .errors import RollbackError
from .logger import get_logger


class RollbackManager:
    """Reverts targets to their pre-rollout version and confirms health"""

    def __init__(self, executor, prober, probe_settings):
        self.executor = executor
        self.prober = prober
        self.probe_settings = probe_settings
        self.logger = get_logger("rollback")

    @staticmethod
    def _version_for(target, to_versions):
        if isinstance(to_versions, str):
            return to_versions
        return to_versions[target.target_id]

    async def _rollback_one(self, target, to_version, force=False):
        """Returns (reverted, error); error is None when the target is back and healthy"""
        reverted = force or target.current_version != to_version
        if reverted:
            error = await self.executor.revert(target, to_version)
            if error is not None:
                return reverted, f"revert failed: {error.reason}"
        else:
            self.logger.debug(f"{target.target_id} already at {to_version}, skipping revert")

        result = await self.prober.probe_with(target, self.probe_settings)
        if not result.passed:
            return reverted, f"unhealthy after revert ({result.attempts} attempts): {result.last_error}"
        return reverted, None

    async def rollback(self, targets, to_versions, force=()):
        """Revert every target, raising RollbackError if any is left inconsistent.

        ``to_versions`` is either a mapping of target id to version or one
        version applied to all targets. Targets already at their version are
        only health-checked unless their id is in ``force``, which is for
        targets whose deploy was interrupted and may be half applied.
        Returns the ids a revert was issued for.
        """
        targets = sorted(targets, key=lambda t: t.target_id)
        if not targets:
            return []

        # Resolve versions up front so a missing snapshot fails before any revert
        versions = [self._version_for(t, to_versions) for t in targets]
        force = set(force)
        self.logger.warning(f"Starting rollback for {len(targets)} targets")

        outcomes = await asyncio.gather(*(
            self._rollback_one(t, v, t.target_id in force) for t, v in zip(targets, versions)
        ))

        reverted = []
        errors = {}
        for target, version, (was_reverted, error) in zip(targets, versions, outcomes):
            if error is not None:
                errors[target.target_id] = error
                self.logger.error(f"Rollback of {target.target_id} to {version} failed: {error}")
            elif was_reverted:
                reverted.append(target.target_id)
                self.logger.info(f"Rolled back {target.target_id} to {version}")
            else:
                self.logger.info(f"{target.target_id} was already at {version} and is healthy")

        if errors:
            raise RollbackError(errors.keys(), errors, reverted)

        self.logger.info("Rollback completed")
        return reverted
