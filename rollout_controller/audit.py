import json
from dataclasses import asdict

from .logger import get_logger


class AuditLog:
    """Append-only JSON-lines record of finished rollouts, kept for postmortems"""

    def __init__(self, path):
        self.path = str(path)
        self.logger = get_logger("audit")

    def record(self, report):
        entry = asdict(report)
        entry["status"] = report.status.value
        with open(self.path, "a") as f:
            f.write(json.dumps(entry) + "\n")
        self.logger.debug(f"Recorded rollout of {report.desired_version} ({entry['status']}) in {self.path}")

    def read(self):
        try:
            with open(self.path) as f:
                return [json.loads(line) for line in f if line.strip()]
        except FileNotFoundError:
            return []
