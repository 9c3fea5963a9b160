import yaml

from .errors import ValidationError
from .logger import get_logger
from .models import (
    AlarmSpec, AppConfig, BlockDevice, Capacity, FleetSpec, LifecycleCallbacks,
    RegionTarget, ScalePolicy, UserdataSource
)


def _userdata(data):
    data = data or {}
    return UserdataSource(type=data.get("type", "") or "", path=data.get("path", "") or "")


def _region(data):
    return RegionTarget(
        region=data["region"],
        vpc=data.get("vpc", ""),
        use_public_subnets=bool(data.get("use_public_subnets", False)),
        security_groups=tuple(data.get("security_groups") or ()),
        healthcheck_load_balancer=data.get("healthcheck_load_balancer", "") or "",
        healthcheck_target_group=data.get("healthcheck_target_group", "") or "",
        target_groups=tuple(data.get("target_groups") or ()),
        load_balancers=tuple(data.get("loadbalancers") or ()),
        availability_zones=tuple(data.get("availability_zones") or ()),
    )


def _alarm(data):
    data = dict(data)
    data["alarm_actions"] = tuple(data.get("alarm_actions") or ())
    return AlarmSpec(**data)


def parse_stack(data):
    callbacks = data.get("lifecycle_callbacks") or {}
    return FleetSpec(
        stack=data["stack"],
        account=data.get("account", "") or "",
        env=data.get("env", "") or "",
        replacement_type=data.get("replacement_type", "BlueGreen") or "BlueGreen",
        instance_type=data.get("instance_type", "") or "",
        ssh_key=data.get("ssh_key", "") or "",
        iam_instance_profile=data.get("iam_instance_profile", "") or "",
        assume_role=data.get("assume_role", "") or "",
        ebs_optimized=bool(data.get("ebs_optimized", False)),
        block_devices=tuple(BlockDevice(**b) for b in data.get("block_devices") or ()),
        capacity=Capacity(**(data.get("capacity") or {})),
        userdata=_userdata(data.get("userdata")),
        autoscaling=tuple(ScalePolicy(**p) for p in data.get("autoscaling") or ()),
        alarms=tuple(_alarm(a) for a in data.get("alarms") or ()),
        lifecycle_callbacks=LifecycleCallbacks(
            pre_terminate_past_clusters=tuple(callbacks.get("pre_terminate_past_clusters") or ())
        ),
        regions=tuple(_region(r) for r in data.get("regions") or ()),
    )


def parse_manifest(data):
    if not isinstance(data, dict):
        raise ValidationError("Manifest must be a mapping")
    if not data.get("name"):
        raise ValidationError("Manifest must define a name")
    app_config = AppConfig(
        name=data["name"],
        userdata=_userdata(data.get("userdata")),
        tags=tuple(data.get("tags") or ()),
    )
    try:
        stacks = [parse_stack(s) for s in data.get("stacks") or ()]
    except (KeyError, TypeError, AttributeError) as e:
        raise ValidationError(f"Invalid stack definition in manifest: {e}") from e
    names = [s.stack for s in stacks]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise ValidationError(f"Stack defined more than once in manifest: {', '.join(duplicates)}")
    return app_config, stacks


def load_manifest(path):
    logger = get_logger("manifest")
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ValidationError(f"Manifest file does not exist: {path}") from e
    except yaml.YAMLError as e:
        logger.error(f"Error parsing manifest {path}: {e}")
        raise ValidationError(f"Manifest {path} is not valid YAML: {e}") from e
    app_config, stacks = parse_manifest(data)
    logger.info(f"Loaded {len(stacks)} stacks from {path}")
    return app_config, stacks
