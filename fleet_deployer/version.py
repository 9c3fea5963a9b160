import re

VERSION_WIDTH = 3


def build_prefix(stack, env, region):
    """Deterministic name fragment shared by every fleet of a stack in one region"""
    return f"{stack}-{env}_{region.replace('-', '')}"


def generate_fleet_name(prefix, version):
    return f"{prefix}-v{version:0{VERSION_WIDTH}d}"


def generate_template_name(fleet_name, timestamp):
    return f"{fleet_name}-{timestamp}"


def parse_version(prefix, fleet_id):
    """Return the version encoded in fleet_id, or None if it does not belong to prefix"""
    match = re.fullmatch(re.escape(prefix) + r"-v(\d+)", fleet_id)
    if not match:
        return None
    return int(match.group(1))


def previous_fleets(prefix, fleet_ids):
    """Fleets that carry a parsable version under exactly this prefix"""
    return [f for f in fleet_ids if parse_version(prefix, f) is not None]


def next_version(prefix, fleet_ids):
    versions = [parse_version(prefix, f) for f in fleet_ids]
    versions = [v for v in versions if v is not None]
    if not versions:
        return 1
    return max(versions) + 1
