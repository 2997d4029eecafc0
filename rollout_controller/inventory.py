import json

from .errors import ConfigurationError, EmptyInventoryError
from .models import Target
from .logger import get_logger

DEFAULT_HEALTH_URL_TEMPLATE = "http://{target}:8080/health"


def health_url_for(target_id, template=DEFAULT_HEALTH_URL_TEMPLATE):
    try:
        return template.format(target=target_id)
    except (KeyError, IndexError) as e:
        raise ConfigurationError(f"bad placeholder {e} in health check URL template") from e


class InventoryProvider:
    """Supplies the ordered list of targets for one rollout.

    The order must be stable across calls since it decides batch
    membership. ``name`` identifies the inventory for rollout locking.
    """

    name = "inventory"

    def list_targets(self):
        raise NotImplementedError


class StaticInventory(InventoryProvider):
    def __init__(self, targets, name="static"):
        self.targets = list(targets)
        self.name = name

    def list_targets(self):
        if not self.targets:
            raise EmptyInventoryError()
        return list(self.targets)


class JsonFileInventory(InventoryProvider):
    """Targets stored as a JSON array::

        [{"target_id": "server-a", "version": "v1.0.0",
          "health_endpoint": "http://server-a:8080/health"}]

    ``health_endpoint`` is optional and falls back to the URL template.
    """

    def __init__(self, path, health_url_template=DEFAULT_HEALTH_URL_TEMPLATE):
        self.path = str(path)
        self.name = self.path
        self.health_url_template = health_url_template
        self.logger = get_logger("inventory")

    def list_targets(self):
        try:
            with open(self.path) as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise ConfigurationError(f"inventory file not found: {self.path}") from e
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"inventory file {self.path} is not valid JSON: {e}") from e

        if not isinstance(data, list):
            raise ConfigurationError(f"inventory file {self.path} must contain a JSON array")
        if not data:
            raise EmptyInventoryError(f"inventory file {self.path} contains no targets")

        targets = []
        for i, entry in enumerate(data):
            if not isinstance(entry, dict) or not entry.get("target_id") or not entry.get("version"):
                raise ConfigurationError(f"inventory entry {i} needs 'target_id' and 'version'")
            endpoint = entry.get("health_endpoint") or health_url_for(entry["target_id"], self.health_url_template)
            targets.append(Target(
                target_id=str(entry["target_id"]),
                current_version=str(entry["version"]),
                health_endpoint=endpoint,
            ))
        self.logger.debug(f"Loaded {len(targets)} targets from {self.path}")
        return targets

    def save_targets(self, targets):
        data = [
            {"target_id": t.target_id, "version": t.current_version, "health_endpoint": t.health_endpoint}
            for t in targets
        ]
        with open(self.path, "w") as f:
            json.dump(data, f, indent=2)
