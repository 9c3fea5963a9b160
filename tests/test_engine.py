import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from fleet_deployer.engine import BlueGreenDeployer, DeployManager
from fleet_deployer.errors import CollaboratorCallError, DeploymentError, ProvisioningError, ValidationError
from fleet_deployer.failure import FailureInjector
from fleet_deployer.memory import InMemoryCloud
from fleet_deployer.models import AlarmSpec, LifecycleCallbacks, Phase, ScalePolicy

from factories import APP, REGION_A, REGION_B, make_config, make_deployer, make_spec, prefix


class TestBlueGreenLifecycle:
    """Full release through every phase."""

    @pytest.mark.asyncio
    async def test_end_to_end_two_regions(self):
        old_a = f"{prefix(REGION_A)}-v001"
        cloud_a = InMemoryCloud(REGION_A, fleets=[old_a])
        cloud_b = InMemoryCloud(REGION_B)
        spec = make_spec(autoscaling=(ScalePolicy("up"),), alarms=(AlarmSpec("cpu", alarm_actions=("up",)),))
        deployer = make_deployer(spec, {REGION_A: cloud_a, REGION_B: cloud_b})
        cfg = make_config()

        await deployer.deploy(cfg)
        new_a = deployer.states[REGION_A].new_fleet_id
        new_b = deployer.states[REGION_B].new_fleet_id
        assert new_a == f"{prefix(REGION_A)}-v002"
        assert new_b == f"{prefix(REGION_B)}-v001"
        assert deployer.states[REGION_A].previous_fleet_ids == [old_a]
        assert deployer.states[REGION_B].previous_fleet_ids == []
        assert all(s.phase == Phase.AWAITING_HEALTH for s in deployer.states.values())

        assert await deployer.health_checking(cfg) == {"demo": False}
        cloud_a.mark_healthy(new_a)
        cloud_b.mark_healthy(new_b)
        assert await deployer.health_checking(cfg) == {"demo": True}

        await deployer.finish_additional_work(cfg)
        assert new_a in cloud_a.metrics_enabled and new_b in cloud_b.metrics_enabled

        await deployer.trigger_lifecycle_callbacks(cfg)
        await deployer.clean_previous_version(cfg)
        assert ("resize_to_zero", old_a) in cloud_a.calls
        assert cloud_a.groups[old_a]["capacity"]["desired"] == 0
        assert not [c for c in cloud_b.calls if c[0] == "resize_to_zero"]
        assert all(s.phase == Phase.AWAITING_TERMINATION for s in deployer.states.values())

        assert await deployer.terminate_checking(cfg) == {"demo": False}
        cloud_a.mark_terminated(old_a)
        assert await deployer.terminate_checking(cfg) == {"demo": True}
        assert all(s.phase == Phase.COMPLETE for s in deployer.states.values())

        # Repeated observation after completion changes nothing
        assert await deployer.terminate_checking(cfg) == {"demo": True}
        assert all(s.phase == Phase.COMPLETE for s in deployer.states.values())

    def test_implements_lifecycle_contract(self):
        deployer = make_deployer(make_spec(), {})
        assert isinstance(deployer, DeployManager)
        assert deployer.get_stack_name() == "demo"


class TestOrderingGuarantees:
    """Previous fleets stay untouched until every region is healthy."""

    @pytest.mark.asyncio
    async def test_previous_fleets_untouched_while_a_region_converges(self):
        old_a = f"{prefix(REGION_A)}-v001"
        old_b = f"{prefix(REGION_B)}-v003"
        cloud_a = InMemoryCloud(REGION_A, fleets=[old_a])
        cloud_b = InMemoryCloud(REGION_B, fleets=[old_b])
        deployer = make_deployer(make_spec(), {REGION_A: cloud_a, REGION_B: cloud_b})
        cfg = make_config()

        await deployer.deploy(cfg)
        cloud_a.mark_healthy(deployer.states[REGION_A].new_fleet_id)
        assert await deployer.health_checking(cfg) == {"demo": False}

        with pytest.raises(DeploymentError, match="healthy"):
            await deployer.clean_previous_version(cfg)
        with pytest.raises(DeploymentError):
            await deployer.finish_additional_work(cfg)

        for cloud in (cloud_a, cloud_b):
            assert not [c for c in cloud.calls if c[0] == "resize_to_zero"]
        assert cloud_a.groups[old_a]["capacity"]["desired"] == 1
        assert cloud_b.groups[old_b]["capacity"]["desired"] == 1

    @pytest.mark.asyncio
    async def test_terminate_checking_before_clean_is_rejected(self):
        cloud = InMemoryCloud(REGION_A)
        deployer = make_deployer(make_spec(regions=(REGION_A,)), {REGION_A: cloud})
        cfg = make_config()
        await deployer.deploy(cfg)
        with pytest.raises(DeploymentError, match="not being drained"):
            await deployer.terminate_checking(cfg)

    @pytest.mark.asyncio
    async def test_health_checking_before_deploy_is_rejected(self):
        deployer = make_deployer(make_spec(regions=(REGION_A,)), {REGION_A: InMemoryCloud(REGION_A)})
        with pytest.raises(DeploymentError, match="deploy first"):
            await deployer.health_checking(make_config())


class TestFailures:
    """Fatal errors during mutating phases."""

    @pytest.mark.asyncio
    async def test_provisioning_failure_marks_region_failed(self):
        injector = FailureInjector(fail_attempts={("create_scaling_group", "*"): 1})
        cloud_a = InMemoryCloud(REGION_A)
        cloud_b = InMemoryCloud(REGION_B, failure_injector=injector)
        deployer = make_deployer(make_spec(), {REGION_A: cloud_a, REGION_B: cloud_b})
        cfg = make_config()

        with pytest.raises(ProvisioningError, match=REGION_B):
            await deployer.deploy(cfg)
        assert deployer.states[REGION_B].phase == Phase.FAILED
        assert "scaling group" in deployer.states[REGION_B].error
        assert deployer.states[REGION_A].phase == Phase.AWAITING_HEALTH

        # The failed region never reaches health polling
        with pytest.raises(DeploymentError):
            await deployer.health_checking(cfg)
        assert not [c for c in cloud_b.calls if c[0] == "fetch_health"]

    @pytest.mark.asyncio
    async def test_policy_failure_is_fatal(self):
        injector = FailureInjector(fail_attempts={("create_scaling_policy", "*"): 1})
        cloud = InMemoryCloud(REGION_A, failure_injector=injector)
        spec = make_spec(regions=(REGION_A,), autoscaling=(ScalePolicy("up"),))
        deployer = make_deployer(spec, {REGION_A: cloud})
        cfg = make_config()

        await deployer.deploy(cfg)
        cloud.mark_healthy(deployer.states[REGION_A].new_fleet_id)
        await deployer.health_checking(cfg)
        with pytest.raises(CollaboratorCallError):
            await deployer.finish_additional_work(cfg)
        assert deployer.states[REGION_A].phase == Phase.FAILED

    @pytest.mark.asyncio
    async def test_missing_client_is_validation_error(self):
        deployer = make_deployer(make_spec(), {REGION_A: InMemoryCloud(REGION_A)})
        with pytest.raises(ValidationError, match=REGION_B):
            await deployer.deploy(make_config())


class TestLifecycleCallbacks:
    """Pre-terminate commands on previous fleets."""

    @pytest.mark.asyncio
    async def test_callbacks_run_on_previous_fleets_before_resize(self):
        old_a = f"{prefix(REGION_A)}-v001"
        cloud = InMemoryCloud(REGION_A, fleets=[old_a])
        spec = make_spec(regions=(REGION_A,),
                         lifecycle_callbacks=LifecycleCallbacks(pre_terminate_past_clusters=("service web stop",)))
        deployer = make_deployer(spec, {REGION_A: cloud})
        cfg = make_config()

        await deployer.deploy(cfg)
        new_a = deployer.states[REGION_A].new_fleet_id
        cloud.mark_healthy(new_a)
        await deployer.health_checking(cfg)
        await deployer.trigger_lifecycle_callbacks(cfg)
        await deployer.clean_previous_version(cfg)

        assert cloud.commands == {old_a: ["service web stop"]}
        ops = [c for c in cloud.calls if c[0] in ("run_lifecycle_commands", "resize_to_zero")]
        assert ops == [("run_lifecycle_commands", old_a), ("resize_to_zero", old_a)]


class TestConcurrency:
    """Parallel region work and the thread safety it relies on."""

    @pytest.mark.asyncio
    async def test_regions_deploy_in_parallel(self):
        clouds = {
            REGION_A: InMemoryCloud(REGION_A, failure_injector=FailureInjector(delay=0.1)),
            REGION_B: InMemoryCloud(REGION_B, failure_injector=FailureInjector(delay=0.1)),
        }
        deployer = make_deployer(make_spec(), clouds)

        start_time = time.time()
        await deployer.deploy(make_config())
        duration = time.time() - start_time

        # Three calls per region; sequential execution would take at least 0.6s
        assert duration < 0.55
        assert set(deployer.states) == {REGION_A, REGION_B}

    @pytest.mark.asyncio
    async def test_userdata_is_read_off_the_event_loop(self):
        loop_thread = threading.current_thread()

        class RecordingUserdata:
            thread = None

            def provide(self):
                RecordingUserdata.thread = threading.current_thread()
                return "ZWNobyBoZWxsbw=="

        spec = make_spec(regions=(REGION_A,))
        deployer = BlueGreenDeployer(spec, APP, {REGION_A: InMemoryCloud(REGION_A)},
                                     userdata_provider=RecordingUserdata())
        await deployer.deploy(make_config())

        assert RecordingUserdata.thread is not None
        assert RecordingUserdata.thread is not loop_thread

    def test_failure_injector_counts_concurrent_attempts(self):
        injector = FailureInjector(fail_attempts={("fetch_health", "*"): 50})
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda i: injector.should_fail("fetch_health", f"fleet-{i}"), range(400)))

        assert results.count(True) == 50
        assert injector.attempts[("fetch_health", "*")] == 400
