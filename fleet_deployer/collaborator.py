from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from .errors import ValidationError

DEFAULT_HEALTHCHECK_TYPE = "EC2"
DEFAULT_HEALTHCHECK_GRACE_PERIOD = 300


@dataclass(frozen=True)
class TemplateParams:
    """Everything needed to create a fleet's compute template"""
    name: str
    image_id: str
    instance_type: str
    key_name: str = ""
    instance_profile: str = ""
    userdata: str = ""  # Base64 encoded startup payload
    ebs_optimized: bool = False
    vpc: str = ""
    security_groups: tuple = ()  # Security group names, resolved by the binding
    block_devices: tuple = ()


@dataclass(frozen=True)
class GroupParams:
    """Everything needed to create a fleet's scaling group"""
    name: str
    template_name: str
    capacity: object
    vpc: str = ""
    use_public_subnets: bool = False
    load_balancers: tuple = ()
    target_groups: tuple = ()  # Target group names, resolved by the binding
    availability_zones: tuple = ()
    tags: tuple = ()  # (key, value) pairs
    healthcheck_type: str = DEFAULT_HEALTHCHECK_TYPE
    healthcheck_grace_period: int = DEFAULT_HEALTHCHECK_GRACE_PERIOD
    termination_policies: tuple = field(default_factory=tuple)


class CloudCollaborator(ABC):
    """Remote operations the deployer needs in one region.

    Every call is a single synchronous round trip. Implementations raise
    CollaboratorCallError when the remote side fails.
    """

    region = None

    @abstractmethod
    def list_fleets_by_prefix(self, prefix):
        """Return the ids of every fleet whose name starts with prefix."""

    @abstractmethod
    def create_compute_template(self, params):
        pass

    @abstractmethod
    def create_scaling_group(self, params):
        pass

    @abstractmethod
    def resize_to_zero(self, fleet_id):
        pass

    @abstractmethod
    def fetch_health(self, fleet_id):
        """True once every instance of the fleet passes its health checks."""

    @abstractmethod
    def fetch_termination_state(self, fleet_id):
        """True once the fleet is gone or holds no instances."""

    @abstractmethod
    def create_scaling_policy(self, policy, fleet_id):
        """Create policy against the fleet and return its handle."""

    @abstractmethod
    def enable_metrics(self, fleet_id):
        pass

    @abstractmethod
    def create_alarms(self, fleet_id, alarms, policy_handles, policy_names):
        pass

    @abstractmethod
    def run_lifecycle_commands(self, fleet_id, commands):
        """Run shell commands on every instance of the fleet."""


def resolve_alarm_actions(region, alarm, policy_handles, policy_names):
    """Handles of the policies an alarm triggers, in the order it names them"""
    handles = dict(zip(policy_names, policy_handles))
    missing = [a for a in alarm.alarm_actions if a not in handles]
    if missing:
        raise ValidationError(f"[{region}] alarm {alarm.name}: no scaling action exists : {', '.join(missing)}")
    return [handles[a] for a in alarm.alarm_actions]
