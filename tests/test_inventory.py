import json
import pytest
from rollout_controller.errors import ConfigurationError, EmptyInventoryError
from rollout_controller.inventory import JsonFileInventory, StaticInventory
from helpers import make_targets


def write_inventory(path, data):
    path.write_text(json.dumps(data))
    return str(path)


class TestJsonFileInventory:
    """Inventory file loading and saving with real files."""

    def test_load_targets_in_file_order(self, tmp_path):
        path = write_inventory(tmp_path / "inventory.json", [
            {"target_id": "server-b", "version": "v1.0.0"},
            {"target_id": "server-a", "version": "v1.0.0", "health_endpoint": "http://10.0.0.1/health"},
        ])

        targets = JsonFileInventory(path).list_targets()
        assert [t.target_id for t in targets] == ["server-b", "server-a"]
        assert targets[0].health_endpoint == "http://server-b:8080/health"
        assert targets[1].health_endpoint == "http://10.0.0.1/health"
        assert targets[0].current_version == "v1.0.0"

    def test_health_url_template(self, tmp_path):
        path = write_inventory(tmp_path / "inventory.json", [{"target_id": "a", "version": "v1"}])

        targets = JsonFileInventory(path, "https://{target}.example.com/healthz").list_targets()
        assert targets[0].health_endpoint == "https://a.example.com/healthz"

    def test_save_and_load_roundtrip(self, tmp_path):
        path = write_inventory(tmp_path / "inventory.json", [{"target_id": "a", "version": "v1"}])
        inventory = JsonFileInventory(path)

        targets = inventory.list_targets()
        targets[0].current_version = "v2"
        inventory.save_targets(targets)

        assert inventory.list_targets()[0].current_version == "v2"

    def test_file_not_found(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            JsonFileInventory(tmp_path / "missing.json").list_targets()

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "inventory.json"
        path.write_text("invalid json content")
        with pytest.raises(ConfigurationError, match="not valid JSON"):
            JsonFileInventory(path).list_targets()

    @pytest.mark.parametrize("data", [
        {"target_id": "a", "version": "v1"},
        [{"target_id": "a"}],
        [{"version": "v1"}],
        ["server-a"],
    ])
    def test_malformed_inventory(self, tmp_path, data):
        path = write_inventory(tmp_path / "inventory.json", data)
        with pytest.raises(ConfigurationError):
            JsonFileInventory(path).list_targets()

    def test_empty_inventory(self, tmp_path):
        path = write_inventory(tmp_path / "inventory.json", [])
        with pytest.raises(EmptyInventoryError):
            JsonFileInventory(path).list_targets()

    def test_bad_url_template(self, tmp_path):
        path = write_inventory(tmp_path / "inventory.json", [{"target_id": "a", "version": "v1"}])
        with pytest.raises(ConfigurationError, match="placeholder"):
            JsonFileInventory(path, "http://{host}/health").list_targets()


class TestStaticInventory:
    def test_returns_copy_in_same_order(self):
        targets = make_targets(["c", "a", "b"])
        inventory = StaticInventory(targets)

        listed = inventory.list_targets()
        assert listed == targets
        assert listed is not inventory.targets
        assert inventory.list_targets() == listed

    def test_empty(self):
        with pytest.raises(EmptyInventoryError):
            StaticInventory([]).list_targets()
