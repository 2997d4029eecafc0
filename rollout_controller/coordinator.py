import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone

from .errors import ConfigurationError, RollbackError, RolloutInProgressError
from .health import HealthProber
from .models import RolloutConfig, RolloutPhase, RolloutPlan, RolloutReport, RolloutState
from .planner import plan_batches
from .rollback import RollbackManager
from .logger import get_logger


def _now():
    return datetime.now(timezone.utc).isoformat()


@dataclass
class MemberOutcome:
    target: object
    deploy_error: object = None
    health: object = None

    @property
    def deployed(self):
        return self.deploy_error is None

    @property
    def healthy(self):
        return self.deployed and self.health is not None and self.health.passed


class RolloutCoordinator:
    """Drives a rolling deployment batch by batch.

    Batches run strictly in order. Members of a batch are deployed and
    probed concurrently and the coordinator waits for all of them before
    deciding whether the batch succeeded. A failed batch (or an operator
    cancel) reverts every committed target plus the members of the failing
    batch that were already deployed. A cancel mid-batch also reverts the
    members whose deploy it cut short.
    """

    # Inventory names with a rollout in progress, shared by all coordinators
    _in_progress = set()

    def __init__(self, inventory, executor, prober=None, config=None, audit_log=None):
        self.inventory = inventory
        self.executor = executor
        self.prober = prober if prober else HealthProber()
        self.config = config if config else RolloutConfig()
        self.audit_log = audit_log
        self.rollback_manager = RollbackManager(executor, self.prober, self.config.effective_rollback_probe)
        self.logger = get_logger("coordinator")

    def plan(self, version, batch_size=None):
        """Planning phase: read inventory once, split it, snapshot versions"""
        if not version or not str(version).strip():
            raise ConfigurationError("desired version must be a non-empty string")
        if batch_size is None:
            batch_size = self.config.batch_size

        targets = self.inventory.list_targets()
        batches = plan_batches(targets, batch_size)

        # Must happen before any deploy, otherwise rollback has nothing to go back to
        previous_versions = {t.target_id: t.current_version for t in targets}
        for target in targets:
            target.desired_version = version

        self.logger.info(f"Planned {len(batches)} batches of up to {batch_size} for {len(targets)} targets")
        return RolloutPlan(
            desired_version=version,
            batch_size=batch_size,
            batches=tuple(batches),
            previous_versions=previous_versions,
        )

    async def rollout(self, version, batch_size=None, cancel_event=None):
        """Plan and execute a rollout in one go"""
        with self._lock():
            plan = self.plan(version, batch_size)
            return await self._execute(plan, cancel_event)

    async def execute(self, plan, cancel_event=None):
        with self._lock():
            return await self._execute(plan, cancel_event)

    def _lock(self):
        return _RolloutLock(self._in_progress, self.inventory.name)

    async def _run_member(self, target, version):
        error = await self.executor.deploy(target, version)
        if error is not None:
            return MemberOutcome(target, deploy_error=error)
        health = await self.prober.probe_with(target, self.config.probe)
        return MemberOutcome(target, health=health)

    async def _run_batch(self, batch, version, cancel_event):
        """Run all members concurrently; returns None when cancelled first"""
        tasks = [asyncio.ensure_future(self._run_member(t, version)) for t in batch.targets]
        gathered = asyncio.gather(*tasks)
        if cancel_event is None:
            return await gathered

        cancel_waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({gathered, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_waiter.cancel()

        if gathered in done:
            return gathered.result()

        gathered.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        return None

    async def _pause(self, cancel_event):
        """Inter-batch delay; returns True if cancelled while waiting"""
        delay = self.config.batch_delay_s
        if not delay or delay <= 0:
            return False
        self.logger.info(f"Waiting {delay}s before next batch")
        if cancel_event is None:
            await asyncio.sleep(delay)
            return False
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return False

    def _record_outcomes(self, batch, outcomes, report):
        for outcome in outcomes:
            history = report.per_target_history.setdefault(outcome.target.target_id, [])
            if not outcome.deployed:
                history.append({"event": "deploy_failed", "batch": batch.index, "error": outcome.deploy_error.reason})
            elif outcome.healthy:
                history.append({"event": "deployed", "batch": batch.index, "attempts": outcome.health.attempts})
            else:
                history.append({
                    "event": "unhealthy",
                    "batch": batch.index,
                    "attempts": outcome.health.attempts,
                    "error": outcome.health.last_error,
                })

    async def _execute(self, plan, cancel_event):
        state = RolloutState(plan.desired_version, plan.batch_size, list(plan.batches))
        report = RolloutReport(
            status=state.status,
            desired_version=plan.desired_version,
            batch_count=len(plan.batches),
            started_at=_now(),
        )
        report.history.append({"event": "planned", "batches": [b.target_ids for b in plan.batches]})
        self.logger.info(f"Starting rollout of {plan.desired_version} in {len(plan.batches)} batches")

        touched = []
        interrupted = []
        for batch in plan.batches:
            state.start_batch(batch.index)
            report.last_batch_index = batch.index
            self.logger.info(f"Starting batch {batch.index + 1}/{len(plan.batches)}: {', '.join(batch.target_ids)}")
            report.history.append({"event": "batch_start", "batch": batch.index, "targets": batch.target_ids})

            outcomes = None
            cancelled_early = cancel_event is not None and cancel_event.is_set()
            if not cancelled_early:
                outcomes = await self._run_batch(batch, plan.desired_version, cancel_event)

            # Barrier reached: state is only mutated from here on
            if outcomes is None:
                report.aborted_reason = "rollout cancelled by operator"
                if not cancelled_early:
                    # A deploy stopped midway may already have taken effect
                    touched = list(batch.targets)
                    interrupted = batch.target_ids
                    state.mark_failed(interrupted)
                    for target_id in interrupted:
                        report.per_target_history.setdefault(target_id, []).append(
                            {"event": "interrupted", "batch": batch.index}
                        )
                break

            self._record_outcomes(batch, outcomes, report)
            failed = [o.target.target_id for o in outcomes if not o.healthy]
            if failed:
                state.mark_failed(failed)
                touched = [o.target for o in outcomes if o.deployed]
                report.aborted_reason = f"batch {batch.index} failed: {', '.join(sorted(failed))}"
                self.logger.error(f"Batch {batch.index + 1} failed for {', '.join(sorted(failed))}")
                break

            state.commit(batch.target_ids)
            report.history.append({
                "event": "batch_completed",
                "batch": batch.index,
                "committed_so_far": len(state.committed),
            })
            self.logger.info(f"Batch {batch.index + 1} completed: {len(batch)} targets healthy")

            is_last = batch.index == len(plan.batches) - 1
            if not is_last and await self._pause(cancel_event):
                report.aborted_reason = "rollout cancelled by operator"
                break

        if report.aborted_reason is None:
            state.transition(RolloutPhase.SUCCEEDED)
            self.logger.info(f"SUCCESS: rollout of {plan.desired_version} completed on {len(state.committed)} targets")
        else:
            report.history.append({"event": "abort", "reason": report.aborted_reason, "batch": state.current_batch_index})
            await self._handle_failure(plan, state, report, touched, interrupted)

        report.status = state.status
        report.committed = sorted(state.committed)
        report.failed = sorted(state.failed)
        report.finished_at = _now()
        if self.audit_log is not None:
            self.audit_log.record(report)
        return report

    async def _handle_failure(self, plan, state, report, touched, interrupted=()):
        targets_by_id = {t.target_id: t for t in plan.targets}
        to_revert = {t.target_id for t in touched} | state.committed

        if not self.config.auto_rollback:
            report.manual_intervention_required = sorted(to_revert)
            state.transition(RolloutPhase.FAILED_MANUAL)
            self.logger.error(
                "Automatic rollback disabled, manual intervention required for: "
                f"{', '.join(report.manual_intervention_required) or 'none'}"
            )
            return

        state.transition(RolloutPhase.ROLLING_BACK)
        report.history.append({"event": "rollback_start", "targets": sorted(to_revert)})
        self.logger.warning(f"Rolling back {len(to_revert)} targets due to: {report.aborted_reason}")

        try:
            reverted = await self.rollback_manager.rollback(
                [targets_by_id[i] for i in to_revert], plan.previous_versions, force=interrupted
            )
        except RollbackError as e:
            reverted = e.reverted
            report.manual_intervention_required = e.manual_intervention_required
            for target_id, error in e.errors.items():
                report.per_target_history.setdefault(target_id, []).append({"event": "revert_failed", "error": error})
            state.uncommit(to_revert - set(e.manual_intervention_required))
            state.transition(RolloutPhase.FAILED_MANUAL)
            self.logger.error(f"FAILED: {e}")
        else:
            state.uncommit(to_revert)
            state.transition(RolloutPhase.FAILED_ROLLED_BACK)

        report.reverted = sorted(reverted)
        for target_id in reverted:
            report.per_target_history.setdefault(target_id, []).append({"event": "reverted"})
        # Already at the previous version, so only health-checked
        for target_id in sorted(to_revert - set(reverted) - set(report.manual_intervention_required)):
            report.per_target_history.setdefault(target_id, []).append({"event": "revert_skipped"})
        report.history.append({
            "event": "rollback_completed",
            "reverted": report.reverted,
            "manual_intervention_required": report.manual_intervention_required,
        })


class _RolloutLock:
    """Refuses a second rollout for the same inventory while one is running"""

    def __init__(self, registry, name):
        self.registry = registry
        self.name = name

    def __enter__(self):
        if self.name in self.registry:
            raise RolloutInProgressError(self.name)
        self.registry.add(self.name)
        return self

    def __exit__(self, exc_type, exc, tb):
        self.registry.discard(self.name)
        return False
