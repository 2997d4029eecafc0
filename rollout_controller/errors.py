class RolloutError(Exception):
    """Base class for every error raised by the rollout controller"""


class ConfigurationError(RolloutError):
    """Bad inventory or settings; raised before any side effect"""


class InvalidBatchSizeError(ConfigurationError):
    def __init__(self, batch_size, target_count):
        super().__init__(f"batch_size must be between 1 and {target_count}, got {batch_size!r}")
        self.batch_size = batch_size
        self.target_count = target_count


class EmptyInventoryError(ConfigurationError):
    def __init__(self, message="inventory contains no targets"):
        super().__init__(message)


class DeployError(RolloutError):
    """Infrastructure failure for a single target.

    Executors return these as values; the coordinator turns them into a
    batch failure instead of letting them escape.
    """

    def __init__(self, target_id, reason):
        super().__init__(f"{target_id}: {reason}")
        self.target_id = target_id
        self.reason = reason


class RollbackError(RolloutError):
    def __init__(self, manual_intervention_required, errors=None, reverted=None):
        self.manual_intervention_required = sorted(manual_intervention_required)
        self.errors = errors or {}
        self.reverted = list(reverted or [])
        names = ", ".join(self.manual_intervention_required)
        super().__init__(f"rollback incomplete, manual intervention required for: {names}")


class RolloutInProgressError(RolloutError, RuntimeError):
    def __init__(self, inventory_name):
        super().__init__(f"rollout already in progress for inventory '{inventory_name}'")
        self.inventory_name = inventory_name
