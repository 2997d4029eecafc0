from .models import (
    Target, Batch, HealthResult, ProbeSettings, RolloutConfig,
    RolloutPhase, RolloutStatus, RolloutPlan, RolloutState, RolloutReport
)
from .errors import (
    RolloutError, ConfigurationError, InvalidBatchSizeError, EmptyInventoryError,
    DeployError, RollbackError, RolloutInProgressError
)
from .inventory import InventoryProvider, StaticInventory, JsonFileInventory
from .planner import plan_batches
from .health import HealthProber
from .executor import DeploymentExecutor, SimulatedExecutor, CommandExecutor
from .failure import FailureInjector
from .rollback import RollbackManager
from .coordinator import RolloutCoordinator
from .audit import AuditLog

__all__ = [
    "Target", "Batch", "HealthResult", "ProbeSettings", "RolloutConfig",
    "RolloutPhase", "RolloutStatus", "RolloutPlan", "RolloutState", "RolloutReport",
    "RolloutError", "ConfigurationError", "InvalidBatchSizeError", "EmptyInventoryError",
    "DeployError", "RollbackError", "RolloutInProgressError",
    "InventoryProvider", "StaticInventory", "JsonFileInventory",
    "plan_batches", "HealthProber",
    "DeploymentExecutor", "SimulatedExecutor", "CommandExecutor", "FailureInjector",
    "RollbackManager", "RolloutCoordinator", "AuditLog"
]
