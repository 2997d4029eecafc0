from .errors import ConfigurationError, EmptyInventoryError, InvalidBatchSizeError
from .models import Batch


def plan_batches(targets, batch_size):
    """Split targets into consecutive batches, the last one may be smaller"""
    target_list = list(targets)
    if not target_list:
        raise EmptyInventoryError()

    if isinstance(batch_size, bool) or not isinstance(batch_size, int):
        raise InvalidBatchSizeError(batch_size, len(target_list))
    if batch_size < 1 or batch_size > len(target_list):
        raise InvalidBatchSizeError(batch_size, len(target_list))

    seen = set()
    for target in target_list:
        if target.target_id in seen:
            raise ConfigurationError(f"duplicate target id '{target.target_id}' in inventory")
        seen.add(target.target_id)

    batches = []
    for i in range(0, len(target_list), batch_size):
        batches.append(Batch(index=len(batches), targets=tuple(target_list[i:i + batch_size])))
    return batches
