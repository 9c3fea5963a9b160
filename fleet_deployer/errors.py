class DeployerError(Exception):
    """Base class for every error raised by the deployer."""


class ValidationError(DeployerError):
    """Pre-flight check failed; nothing remote has been touched."""


class CollaboratorCallError(DeployerError):
    """A single remote call failed."""

    def __init__(self, region, operation, resource, reason):
        self.region = region
        self.operation = operation
        self.resource = resource
        self.reason = reason
        super().__init__(f"[{region}] {operation} failed for {resource}: {reason}")


class ProvisioningError(DeployerError):
    """Creating a fleet's template or scaling group failed."""

    def __init__(self, region, resource, reason):
        self.region = region
        self.resource = resource
        super().__init__(f"[{region}] provisioning {resource} failed: {reason}")


class DeploymentError(DeployerError):
    """A mutating lifecycle phase failed or was invoked out of order."""


class ConvergenceTimeout(DeployerError):
    """The runner gave up waiting for a polling phase to converge."""
