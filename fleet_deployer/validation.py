import os

from .errors import ValidationError
from .userdata import resolve_source


def check_policies(spec):
    """Every alarm action must name one of the stack's scaling policies"""
    names = []
    for policy in spec.autoscaling:
        if not policy.name:
            raise ValidationError(f"[{spec.stack}] autoscaling policy doesn't have a name")
        if policy.name in names:
            raise ValidationError(f"[{spec.stack}] duplicate autoscaling policy name: {policy.name}")
        names.append(policy.name)

    for alarm in spec.alarms:
        for action in alarm.alarm_actions:
            if action not in names:
                raise ValidationError(f"[{spec.stack}] alarm {alarm.name}: no scaling action exists : {action}")


def check_capacity(spec):
    c = spec.capacity
    if not (0 <= c.min <= c.desired <= c.max):
        raise ValidationError(
            f"[{spec.stack}] capacity must satisfy 0 <= min <= desired <= max, got {c.min}/{c.desired}/{c.max}"
        )


def check_regions(spec, config):
    if not spec.regions:
        raise ValidationError(f"[{spec.stack}] no regions configured")
    regions = [t.region for t in spec.regions]
    if len(set(regions)) != len(regions):
        raise ValidationError(f"[{spec.stack}] a region is listed more than once")
    if config.region and config.region not in regions:
        raise ValidationError(
            f"[{spec.stack}] region filter {config.region} matches none of: {', '.join(regions)}"
        )


def check_userdata(spec, app_config):
    source = resolve_source(spec.userdata, app_config.userdata)
    if source.type in ("", "local"):
        if not source.path:
            raise ValidationError(f"[{spec.stack}] Please specify userdata script path")
        if not os.path.isfile(source.path):
            raise ValidationError(f"[{spec.stack}] Userdata file does not exist in {source.path}")
    elif source.type != "s3":
        raise ValidationError(f"[{spec.stack}] Unknown userdata type '{source.type}'")


def select_stacks(stacks, config):
    """Stacks named by the release, in the order they were asked for"""
    wanted = config.selected_stacks()
    if not wanted:
        raise ValidationError("No stack selected")
    duplicates = sorted({name for name in wanted if wanted.count(name) > 1})
    if duplicates:
        raise ValidationError(f"Stack selected more than once: {', '.join(duplicates)}")
    by_name = {s.stack: s for s in stacks}
    missing = [name for name in wanted if name not in by_name]
    if missing:
        raise ValidationError(f"Stack not found in manifest: {', '.join(missing)}")
    return [by_name[name] for name in wanted]


def validate_release(app_config, stacks, config, check_files=True):
    """Pre-flight checks; raises ValidationError before anything remote is touched"""
    if not stacks:
        raise ValidationError("Manifest does not define any stack")
    if not config.ami:
        raise ValidationError("An image id is required")
    if config.timeout <= 0:
        raise ValidationError("Timeout must be a positive number of minutes")

    selected = select_stacks(stacks, config)
    for spec in selected:
        if config.env and spec.env and config.env != spec.env:
            raise ValidationError(f"[{spec.stack}] environment {spec.env} does not match requested {config.env}")
        if not (spec.env or config.env):
            raise ValidationError(f"[{spec.stack}] no environment given")
        check_policies(spec)
        check_capacity(spec)
        check_regions(spec, config)
        if check_files:
            check_userdata(spec, app_config)
    return selected
