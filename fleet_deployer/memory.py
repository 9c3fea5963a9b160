import threading
import time

from .collaborator import CloudCollaborator, resolve_alarm_actions
from .errors import CollaboratorCallError
from .failure import FailureInjector
from .logger import get_logger


class InMemoryCloud(CloudCollaborator):
    """Collaborator backed by dictionaries, for rehearsals and tests.

    New fleets start unhealthy and resized fleets keep their instances until
    mark_healthy / mark_terminated are called, mirroring the asynchronous
    behaviour of a real cloud.
    """

    MUTATING = {
        "create_compute_template", "create_scaling_group", "resize_to_zero",
        "create_scaling_policy", "enable_metrics", "create_alarms",
        "run_lifecycle_commands",
    }

    def __init__(self, region, failure_injector=None, fleets=None):
        self.region = region
        self.failure_injector = failure_injector if failure_injector else FailureInjector()
        self.logger = get_logger("memory")
        self.templates = {}
        self.groups = {}
        self.policies = {}
        self.alarms = {}
        self.metrics_enabled = set()
        self.commands = {}
        self.calls = []
        self._lock = threading.Lock()
        for fleet_id in fleets or []:
            self.add_fleet(fleet_id)

    def add_fleet(self, fleet_id, instances=1, healthy=True):
        self.groups[fleet_id] = {
            "params": None,
            "capacity": {"min": instances, "max": instances, "desired": instances},
            "instances": instances,
            "healthy": healthy,
        }

    def mark_healthy(self, fleet_id, healthy=True):
        self.groups[fleet_id]["healthy"] = healthy

    def mark_terminated(self, fleet_id):
        self.groups[fleet_id]["instances"] = 0

    def mutating_calls(self):
        return [c for c in self.calls if c[0] in self.MUTATING]

    def _call(self, operation, resource):
        with self._lock:
            self.calls.append((operation, resource))
        delay = self.failure_injector.delay_seconds()
        if delay > 0:
            time.sleep(delay)
        if self.failure_injector.should_fail(operation, resource):
            raise CollaboratorCallError(self.region, operation, resource, "injected failure")

    def _group(self, operation, fleet_id):
        if fleet_id not in self.groups:
            raise CollaboratorCallError(self.region, operation, fleet_id, "no such fleet")
        return self.groups[fleet_id]

    def list_fleets_by_prefix(self, prefix):
        self._call("list_fleets_by_prefix", prefix)
        return sorted(name for name in self.groups if name.startswith(prefix))

    def create_compute_template(self, params):
        self._call("create_compute_template", params.name)
        if params.name in self.templates:
            raise CollaboratorCallError(self.region, "create_compute_template", params.name, "already exists")
        self.templates[params.name] = params

    def create_scaling_group(self, params):
        self._call("create_scaling_group", params.name)
        if params.name in self.groups:
            raise CollaboratorCallError(self.region, "create_scaling_group", params.name, "already exists")
        if params.template_name not in self.templates:
            raise CollaboratorCallError(self.region, "create_scaling_group", params.name,
                                        f"unknown template {params.template_name}")
        capacity = params.capacity
        self.groups[params.name] = {
            "params": params,
            "capacity": {"min": capacity.min, "max": capacity.max, "desired": capacity.desired},
            "instances": capacity.desired,
            "healthy": False,
        }
        self.logger.debug(f"Created group {params.name} in {self.region}")

    def resize_to_zero(self, fleet_id):
        self._call("resize_to_zero", fleet_id)
        group = self._group("resize_to_zero", fleet_id)
        group["capacity"] = {"min": 0, "max": 0, "desired": 0}

    def fetch_health(self, fleet_id):
        self._call("fetch_health", fleet_id)
        return self._group("fetch_health", fleet_id)["healthy"]

    def fetch_termination_state(self, fleet_id):
        self._call("fetch_termination_state", fleet_id)
        group = self.groups.get(fleet_id)
        return group is None or group["instances"] == 0

    def create_scaling_policy(self, policy, fleet_id):
        self._call("create_scaling_policy", f"{fleet_id}/{policy.name}")
        self._group("create_scaling_policy", fleet_id)
        handle = f"policy:{self.region}:{fleet_id}:{policy.name}"
        self.policies[handle] = policy
        return handle

    def enable_metrics(self, fleet_id):
        self._call("enable_metrics", fleet_id)
        self._group("enable_metrics", fleet_id)
        self.metrics_enabled.add(fleet_id)

    def create_alarms(self, fleet_id, alarms, policy_handles, policy_names):
        self._call("create_alarms", fleet_id)
        actions = [resolve_alarm_actions(self.region, a, policy_handles, policy_names) for a in alarms]
        for alarm, alarm_actions in zip(alarms, actions):
            self.alarms[f"{fleet_id}-{alarm.name}"] = alarm_actions

    def run_lifecycle_commands(self, fleet_id, commands):
        self._call("run_lifecycle_commands", fleet_id)
        self._group("run_lifecycle_commands", fleet_id)
        self.commands.setdefault(fleet_id, []).extend(commands)
