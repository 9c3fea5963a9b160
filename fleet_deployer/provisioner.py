from dataclasses import dataclass

from .collaborator import GroupParams, TemplateParams
from .errors import CollaboratorCallError, ProvisioningError
from .logger import get_logger
from .version import (
    build_prefix, generate_fleet_name, generate_template_name, next_version, previous_fleets
)


@dataclass(frozen=True)
class FleetPlan:
    """Names chosen for one region's new fleet"""
    region: str
    prefix: str
    fleet_name: str
    template_name: str
    previous_fleet_ids: tuple = ()


def with_mandatory(items, mandatory):
    """Append mandatory to items unless it is empty or already there"""
    items = list(items)
    if mandatory and mandatory not in items:
        items.append(mandatory)
    return tuple(items)


def generate_tags(fleet_name, app_name, spec, env, extra_tags=()):
    tags = [("Name", fleet_name), ("app", app_name), ("stack", spec.stack), ("env", env)]
    if spec.account:
        tags.append(("account", spec.account))
    reserved = {k for k, _ in tags}
    for raw in extra_tags:
        key, sep, value = raw.partition("=")
        key = key.strip()
        if not sep or not key or key in reserved:
            continue
        reserved.add(key)
        tags.append((key, value.strip()))
    return tuple(tags)


class FleetProvisioner:
    def __init__(self, app_config, logger=None):
        self.app_config = app_config
        self.logger = logger if logger else get_logger("provisioner")

    def plan(self, client, spec, target, env, timestamp):
        """Resolve the new fleet's name from the fleets already in the region"""
        prefix = build_prefix(spec.stack, env, target.region)
        existing = client.list_fleets_by_prefix(prefix)
        previous = previous_fleets(prefix, existing)
        self.logger.info(f"[{target.region}] Previous versions: {' | '.join(previous) or 'none'}")

        fleet_name = generate_fleet_name(prefix, next_version(prefix, existing))
        self.logger.info(f"[{target.region}] New fleet: {fleet_name}")
        return FleetPlan(
            region=target.region,
            prefix=prefix,
            fleet_name=fleet_name,
            template_name=generate_template_name(fleet_name, timestamp),
            previous_fleet_ids=tuple(previous),
        )

    def provision(self, client, spec, target, plan, image_id, userdata, env):
        template = TemplateParams(
            name=plan.template_name,
            image_id=image_id,
            instance_type=spec.instance_type,
            key_name=spec.ssh_key,
            instance_profile=spec.iam_instance_profile,
            userdata=userdata,
            ebs_optimized=spec.ebs_optimized,
            vpc=target.vpc,
            security_groups=tuple(target.security_groups),
            block_devices=tuple(spec.block_devices),
        )
        try:
            client.create_compute_template(template)
        except CollaboratorCallError as e:
            raise ProvisioningError(target.region, f"compute template {plan.template_name}", e.reason) from e
        self.logger.info(f"[{target.region}] Created compute template {plan.template_name}")

        group = GroupParams(
            name=plan.fleet_name,
            template_name=plan.template_name,
            capacity=spec.capacity,
            vpc=target.vpc,
            use_public_subnets=target.use_public_subnets,
            load_balancers=with_mandatory(target.load_balancers, target.healthcheck_load_balancer),
            target_groups=with_mandatory(target.target_groups, target.healthcheck_target_group),
            availability_zones=tuple(target.availability_zones),
            tags=generate_tags(plan.fleet_name, self.app_config.name, spec, env, self.app_config.tags),
        )
        try:
            client.create_scaling_group(group)
        except CollaboratorCallError as e:
            raise ProvisioningError(target.region, f"scaling group {plan.fleet_name}", e.reason) from e
        self.logger.info(f"[{target.region}] Created scaling group {plan.fleet_name}")
        return group
