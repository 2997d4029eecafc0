class FailureInjector:
    """Scripted failures for the simulated executor.

    ``fail_deploys`` and ``fail_reverts`` map a target id to the number of
    calls that fail before the target starts succeeding.
    """

    def __init__(self, fail_deploys=None, fail_reverts=None, delay=0):
        self.fail_deploys = fail_deploys or {}
        self.fail_reverts = fail_reverts or {}
        self.delay = delay
        self.attempts = {}

    def delay_seconds(self):
        return self.delay

    def _should_fail(self, action, target, fail_map):
        key = (action, target.target_id)
        self.attempts[key] = self.attempts.get(key, 0) + 1
        return self.attempts[key] <= fail_map.get(target.target_id, 0)

    def should_fail_deploy(self, target):
        return self._should_fail("deploy", target, self.fail_deploys)

    def should_fail_revert(self, target):
        return self._should_fail("revert", target, self.fail_reverts)
