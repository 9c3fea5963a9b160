import os
import tempfile

import pytest

from fleet_deployer.errors import ValidationError
from fleet_deployer.manifest import load_manifest
from fleet_deployer.models import Capacity

MANIFEST = """
name: demo
userdata:
  type: local
  path: scripts/userdata.sh
tags:
  - team=platform
stacks:
  - stack: web
    account: prod
    env: prod
    instance_type: t3.small
    ssh_key: ops
    iam_instance_profile: web
    ebs_optimized: true
    block_devices:
      - device_name: /dev/xvda
        volume_size: 20
        volume_type: gp3
    capacity:
      min: 1
      max: 2
      desired: 1
    autoscaling:
      - name: up
        adjustment_type: ChangeInCapacity
        scaling_adjustment: 1
        cooldown: 60
    alarms:
      - name: cpu-high
        namespace: AWS/EC2
        metric: CPUUtilization
        statistic: Average
        comparison: GreaterThanOrEqualToThreshold
        threshold: 60
        period: 120
        evaluation_periods: 2
        alarm_actions: [up]
    lifecycle_callbacks:
      pre_terminate_past_clusters:
        - service web stop
    regions:
      - region: us-east-1
        vpc: vpc-main
        security_groups: [web]
        healthcheck_target_group: web-tg
        loadbalancers: [public-lb]
        availability_zones: [us-east-1a, us-east-1b]
  - stack: worker
    regions:
      - region: us-west-2
"""


def _write(content):
    with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
        f.write(content)
        return f.name


class TestManifestLoading:
    """YAML manifest to dataclasses."""

    def test_load_full_manifest(self):
        path = _write(MANIFEST)
        try:
            app, stacks = load_manifest(path)
        finally:
            os.unlink(path)

        assert app.name == "demo"
        assert app.userdata.path == "scripts/userdata.sh"
        assert app.tags == ("team=platform",)
        web, worker = stacks
        assert web.stack == "web"
        assert web.ebs_optimized is True
        assert web.capacity == Capacity(min=1, max=2, desired=1)
        assert web.block_devices[0].volume_size == 20
        assert web.autoscaling[0].cooldown == 60
        assert web.alarms[0].alarm_actions == ("up",)
        assert web.lifecycle_callbacks.pre_terminate_past_clusters == ("service web stop",)
        region = web.regions[0]
        assert region.security_groups == ("web",)
        assert region.load_balancers == ("public-lb",)
        assert region.use_public_subnets is False

    def test_defaults_for_sparse_stack(self):
        path = _write(MANIFEST)
        try:
            _, stacks = load_manifest(path)
        finally:
            os.unlink(path)

        worker = stacks[1]
        assert worker.capacity == Capacity()
        assert worker.autoscaling == ()
        assert worker.userdata.type == ""
        assert worker.regions[0].region == "us-west-2"

    def test_missing_file(self):
        with pytest.raises(ValidationError, match="does not exist"):
            load_manifest("non_existent_manifest.yaml")

    def test_invalid_yaml(self):
        path = _write("name: [unclosed")
        try:
            with pytest.raises(ValidationError, match="not valid YAML"):
                load_manifest(path)
        finally:
            os.unlink(path)

    def test_unknown_alarm_field(self):
        path = _write("name: demo\nstacks:\n  - stack: web\n    alarms:\n      - name: a\n        bogus: 1\n")
        try:
            with pytest.raises(ValidationError, match="Invalid stack"):
                load_manifest(path)
        finally:
            os.unlink(path)

    def test_duplicate_stack_names(self):
        path = _write("name: demo\nstacks:\n  - stack: web\n  - stack: api\n  - stack: web\n")
        try:
            with pytest.raises(ValidationError, match="more than once in manifest: web"):
                load_manifest(path)
        finally:
            os.unlink(path)

    def test_manifest_without_name(self):
        path = _write("stacks: []\n")
        try:
            with pytest.raises(ValidationError, match="name"):
                load_manifest(path)
        finally:
            os.unlink(path)
