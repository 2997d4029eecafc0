from dataclasses import dataclass, field
from enum import Enum


class RolloutPhase(str, Enum):
    PLANNING = "planning"
    BATCH_IN_PROGRESS = "batch_in_progress"
    ROLLING_BACK = "rolling_back"
    SUCCEEDED = "succeeded"
    FAILED_ROLLED_BACK = "failed_rolled_back"
    FAILED_MANUAL = "failed_manual"


class RolloutStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED_ROLLED_BACK = "failed_rolled_back"
    FAILED_MANUAL = "failed_manual"


TERMINAL_PHASES = {
    RolloutPhase.SUCCEEDED,
    RolloutPhase.FAILED_ROLLED_BACK,
    RolloutPhase.FAILED_MANUAL,
}

# Allowed phase transitions of a single rollout
TRANSITIONS = {
    RolloutPhase.PLANNING: {RolloutPhase.BATCH_IN_PROGRESS},
    RolloutPhase.BATCH_IN_PROGRESS: {
        RolloutPhase.BATCH_IN_PROGRESS,
        RolloutPhase.ROLLING_BACK,
        RolloutPhase.SUCCEEDED,
        RolloutPhase.FAILED_MANUAL,
    },
    RolloutPhase.ROLLING_BACK: {RolloutPhase.FAILED_ROLLED_BACK, RolloutPhase.FAILED_MANUAL},
}


@dataclass
class Target:
    target_id: str
    current_version: str
    health_endpoint: str
    desired_version: str = None


@dataclass(frozen=True)
class Batch:
    index: int
    targets: tuple

    @property
    def target_ids(self):
        return [t.target_id for t in self.targets]

    def __len__(self):
        return len(self.targets)


@dataclass
class HealthResult:
    target_id: str
    passed: bool
    attempts: int
    last_error: str = None


@dataclass
class ProbeSettings:
    """Attempt budget for one health probe"""
    timeout_s: float = 5.0  # Per-attempt request timeout
    max_attempts: int = 5
    backoff_s: float = 10.0  # Fixed pause between attempts


@dataclass
class RolloutConfig:
    """Configuration for rollout behavior"""
    batch_size: int = 1  # How many targets to deploy at once
    probe: ProbeSettings = field(default_factory=ProbeSettings)
    rollback_probe: ProbeSettings = None  # Defaults to probe when unset
    batch_delay_s: float = 0.0  # Pause between batches
    auto_rollback: bool = True
    deploy_timeout_s: float = None  # Timeout per deploy/revert call
    deploy_retries: int = 0  # Extra attempts for a failing deploy/revert
    deploy_retry_base_delay_s: float = 0.1

    @property
    def effective_rollback_probe(self):
        return self.rollback_probe if self.rollback_probe is not None else self.probe


@dataclass(frozen=True)
class RolloutPlan:
    """Output of the planning phase; nothing has been touched yet"""
    desired_version: str
    batch_size: int
    batches: tuple
    previous_versions: dict  # target_id -> version captured before any deploy

    @property
    def targets(self):
        return [t for b in self.batches for t in b.targets]


@dataclass
class RolloutState:
    """Mutable state of one rollout, owned by the coordinator"""
    desired_version: str
    batch_size: int
    batches: list
    committed: set = field(default_factory=set)
    failed: set = field(default_factory=set)
    current_batch_index: int = 0
    phase: RolloutPhase = RolloutPhase.PLANNING

    @property
    def status(self):
        if self.phase in TERMINAL_PHASES:
            return RolloutStatus(self.phase.value)
        return RolloutStatus.IN_PROGRESS

    @property
    def is_terminal(self):
        return self.phase in TERMINAL_PHASES

    def _check_mutable(self):
        if self.is_terminal:
            raise RuntimeError(f"rollout already finished with status {self.phase.value}")

    def transition(self, phase):
        self._check_mutable()
        if phase not in TRANSITIONS[self.phase]:
            raise RuntimeError(f"illegal transition {self.phase.value} -> {phase.value}")
        self.phase = phase

    def start_batch(self, index):
        self._check_mutable()
        self.current_batch_index = index
        self.transition(RolloutPhase.BATCH_IN_PROGRESS)

    def commit(self, target_ids):
        self._check_mutable()
        self.committed.update(target_ids)

    def mark_failed(self, target_ids):
        self._check_mutable()
        self.failed.update(target_ids)

    def uncommit(self, target_ids):
        self._check_mutable()
        self.committed.difference_update(target_ids)


@dataclass
class RolloutReport:
    """Results from a rollout run"""
    status: RolloutStatus
    desired_version: str
    batch_count: int = 0
    last_batch_index: int = None  # Index of the last batch that was started
    committed: list = field(default_factory=list)  # Targets deployed and healthy
    failed: list = field(default_factory=list)  # Targets that failed deploy or health
    reverted: list = field(default_factory=list)  # Targets rolled back to their previous version
    manual_intervention_required: list = field(default_factory=list)
    aborted_reason: str = None
    started_at: str = None
    finished_at: str = None
    history: list = field(default_factory=list)  # Rollout-level events
    per_target_history: dict = field(default_factory=dict)  # Per-target events

    @property
    def succeeded(self):
        return self.status == RolloutStatus.SUCCEEDED
