import threading


class FailureInjector:
    """Makes chosen collaborator calls fail a fixed number of times.

    fail_attempts maps (operation, resource) to the number of calls that
    should fail before the call starts succeeding. A resource of "*" matches
    any resource.
    """

    def __init__(self, fail_attempts=None, delay=0):
        self.fail_map = fail_attempts or {}
        self.delay = delay
        self.attempts = {}
        self._lock = threading.Lock()

    def delay_seconds(self):
        return self.delay

    def should_fail(self, operation, resource):
        for key in ((operation, resource), (operation, "*")):
            if key in self.fail_map:
                with self._lock:
                    self.attempts[key] = self.attempts.get(key, 0) + 1
                    return self.attempts[key] <= self.fail_map[key]
        return False
