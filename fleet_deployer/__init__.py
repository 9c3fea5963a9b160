from .models import (
    Phase, Capacity, BlockDevice, ScalePolicy, AlarmSpec, LifecycleCallbacks,
    UserdataSource, RegionTarget, FleetSpec, AppConfig, ReleaseConfig,
    DeploymentState, HealthSnapshot
)
from .errors import (
    DeployerError, ValidationError, ProvisioningError, CollaboratorCallError,
    DeploymentError, ConvergenceTimeout
)
from .collaborator import CloudCollaborator
from .engine import DeployManager, BlueGreenDeployer
from .memory import InMemoryCloud
from .failure import FailureInjector
from .runner import ReleaseRunner

__all__ = [
    "Phase", "Capacity", "BlockDevice", "ScalePolicy", "AlarmSpec",
    "LifecycleCallbacks", "UserdataSource", "RegionTarget", "FleetSpec",
    "AppConfig", "ReleaseConfig", "DeploymentState", "HealthSnapshot",
    "DeployerError", "ValidationError", "ProvisioningError",
    "CollaboratorCallError", "DeploymentError", "ConvergenceTimeout",
    "CloudCollaborator", "DeployManager", "BlueGreenDeployer",
    "InMemoryCloud", "FailureInjector", "ReleaseRunner"
]
