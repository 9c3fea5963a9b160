from .logger import get_logger


class LifecycleFinalizer:
    """Attaches scaling policies, metrics and alarms to a healthy fleet"""

    def __init__(self, logger=None):
        self.logger = logger if logger else get_logger("finalizer")

    def finalize(self, client, region, spec, fleet_id):
        """Returns the created policy handles, empty when the stack has none"""
        if not spec.autoscaling:
            self.logger.info(f"[{region}] No scaling policy exists")
            return []

        self.logger.info(f"[{region}] Attaching {len(spec.autoscaling)} scaling policies to {fleet_id}")
        handles = []
        names = []
        for policy in spec.autoscaling:
            # A failure here stops the remaining policies of this region
            handles.append(client.create_scaling_policy(policy, fleet_id))
            names.append(policy.name)

        client.enable_metrics(fleet_id)
        if spec.alarms:
            client.create_alarms(fleet_id, list(spec.alarms), handles, names)
            self.logger.info(f"[{region}] Created {len(spec.alarms)} alarms for {fleet_id}")
        return handles
