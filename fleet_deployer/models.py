import time
from dataclasses import dataclass, field
from enum import Enum


class Phase(str, Enum):
    PROVISIONING = "provisioning"
    AWAITING_HEALTH = "awaiting_health"
    FINALIZING = "finalizing"
    DECOMMISSIONING = "decommissioning"
    AWAITING_TERMINATION = "awaiting_termination"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(frozen=True)
class Capacity:
    min: int = 1
    max: int = 1
    desired: int = 1


@dataclass(frozen=True)
class BlockDevice:
    device_name: str
    volume_size: int = 8
    volume_type: str = "gp3"


@dataclass(frozen=True)
class ScalePolicy:
    name: str
    adjustment_type: str = "ChangeInCapacity"
    scaling_adjustment: int = 1
    cooldown: int = 300


@dataclass(frozen=True)
class AlarmSpec:
    name: str
    namespace: str = "AWS/EC2"
    metric: str = "CPUUtilization"
    statistic: str = "Average"
    comparison: str = "GreaterThanOrEqualToThreshold"
    threshold: float = 50
    period: int = 300
    evaluation_periods: int = 1
    alarm_actions: tuple = ()  # Names of scaling policies to trigger


@dataclass(frozen=True)
class LifecycleCallbacks:
    pre_terminate_past_clusters: tuple = ()  # Commands run on previous fleets before scale-down


@dataclass(frozen=True)
class UserdataSource:
    type: str = ""  # "local" or "s3"
    path: str = ""


@dataclass(frozen=True)
class RegionTarget:
    """One region's deployment context"""
    region: str
    vpc: str = ""
    use_public_subnets: bool = False
    security_groups: tuple = ()
    healthcheck_load_balancer: str = ""
    healthcheck_target_group: str = ""
    target_groups: tuple = ()
    load_balancers: tuple = ()
    availability_zones: tuple = ()


@dataclass(frozen=True)
class FleetSpec:
    """Per-stack release description loaded from the manifest"""
    stack: str
    account: str = ""
    env: str = ""
    replacement_type: str = "BlueGreen"
    instance_type: str = ""
    ssh_key: str = ""
    iam_instance_profile: str = ""
    assume_role: str = ""
    ebs_optimized: bool = False
    block_devices: tuple = ()
    capacity: Capacity = field(default_factory=Capacity)
    userdata: UserdataSource = field(default_factory=UserdataSource)
    autoscaling: tuple = ()  # ScalePolicy entries
    alarms: tuple = ()  # AlarmSpec entries
    lifecycle_callbacks: LifecycleCallbacks = field(default_factory=LifecycleCallbacks)
    regions: tuple = ()  # RegionTarget entries


@dataclass(frozen=True)
class AppConfig:
    """Manifest-level settings shared by every stack"""
    name: str
    userdata: UserdataSource = field(default_factory=UserdataSource)
    tags: tuple = ()  # "key=value" strings


@dataclass
class ReleaseConfig:
    """Per-invocation settings, usually taken from the command line"""
    manifest: str = ""
    ami: str = ""
    env: str = ""
    stack: str = ""  # Ordered, comma-delimited list of stacks
    assume_role: str = ""
    timeout: int = 60  # Minutes the runner waits for each polling phase
    region: str = ""  # Deploy to this region only when set
    confirm: bool = True
    poll_interval: float = 30.0  # Seconds between polling ticks
    start_timestamp: int = field(default_factory=lambda: int(time.time()))

    def selected_stacks(self):
        return [s.strip() for s in self.stack.split(",") if s.strip()]

    def is_region_active(self, region):
        return not self.region or self.region == region


@dataclass
class DeploymentState:
    """Per-region release progress, owned by the orchestrator"""
    region: str
    new_fleet_id: str = None
    previous_fleet_ids: list = field(default_factory=list)
    phase: Phase = Phase.PROVISIONING
    error: str = None  # Why the region failed (if it did)


@dataclass
class HealthSnapshot:
    """Result of one polling tick"""
    regions: dict = field(default_factory=dict)  # region -> bool
    errors: dict = field(default_factory=dict)  # region -> error message
    healthy: bool = False
