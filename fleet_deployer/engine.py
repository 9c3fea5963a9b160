import asyncio
from abc import ABC, abstractmethod

from .decommission import DecommissionSequencer
from .errors import DeploymentError, ValidationError
from .finalizer import LifecycleFinalizer
from .health import HealthConvergencePoller
from .logger import get_logger
from .models import DeploymentState, Phase
from .provisioner import FleetProvisioner
from .tasks import gather_regions
from .userdata import build_provider
from .validation import check_capacity, check_policies, check_regions


class DeployManager(ABC):
    """Lifecycle every deployment strategy implements.

    The runner calls validate on every deployer first, then deploy once,
    health_checking until it reports True, then finish_additional_work,
    trigger_lifecycle_callbacks and clean_previous_version once each, and
    terminate_checking until it reports True. Polling methods return
    {stack_name: done}.
    """

    @abstractmethod
    def get_stack_name(self):
        pass

    @abstractmethod
    def validate(self, config):
        """Pre-flight checks; must raise before anything remote is touched."""

    @abstractmethod
    async def deploy(self, config):
        pass

    @abstractmethod
    async def health_checking(self, config):
        pass

    @abstractmethod
    async def finish_additional_work(self, config):
        pass

    @abstractmethod
    async def trigger_lifecycle_callbacks(self, config):
        pass

    @abstractmethod
    async def clean_previous_version(self, config):
        pass

    @abstractmethod
    async def terminate_checking(self, config):
        pass


class BlueGreenDeployer(DeployManager):
    mode = "BlueGreen"

    def __init__(self, spec, app_config, clients, logger=None, userdata_provider=None):
        self.spec = spec
        self.app_config = app_config
        self.clients = clients  # region -> CloudCollaborator
        self.logger = logger if logger else get_logger("engine")
        self.userdata_provider = userdata_provider
        self.provisioner = FleetProvisioner(app_config, logger=self.logger.getChild("provisioner"))
        self.poller = HealthConvergencePoller(logger=self.logger.getChild("health"))
        self.finalizer = LifecycleFinalizer(logger=self.logger.getChild("finalizer"))
        self.sequencer = DecommissionSequencer(logger=self.logger.getChild("decommission"))
        self.states = {}  # region -> DeploymentState
        self.health_confirmed = False

    def get_stack_name(self):
        return self.spec.stack

    def environment(self, config):
        return self.spec.env or config.env

    def active_targets(self, config):
        targets = []
        for target in self.spec.regions:
            if not config.is_region_active(target.region):
                self.logger.info(f"This region is skipped by user : {target.region}")
                continue
            targets.append(target)
        return targets

    def _client(self, region):
        if region not in self.clients:
            raise ValidationError(f"No cloud client configured for region {region}")
        return self.clients[region]

    def _merge(self, results, on_success):
        """Apply per-region results to the state map, then raise the first failure"""
        failures = []
        for region, result in results.items():
            if isinstance(result, BaseException):
                self.states[region].phase = Phase.FAILED
                self.states[region].error = str(result)
                self.logger.error(f"[{region}] {result}")
                failures.append(result)
            else:
                on_success(region, result)
        if failures:
            raise failures[0]

    def _require_health(self, action):
        if not self.health_confirmed:
            raise DeploymentError(
                f"Cannot {action} for {self.get_stack_name()} before every region has been healthy"
            )

    async def plan(self, config):
        """Read-only part of deploy: which fleet each region would get"""
        env = self.environment(config)
        targets = {t.region: t for t in self.active_targets(config)}

        def plan_region(region):
            return self.provisioner.plan(self._client(region), self.spec, targets[region], env,
                                         config.start_timestamp)

        results = await gather_regions(plan_region, targets)
        for result in results.values():
            if isinstance(result, BaseException):
                raise result
        return results

    def validate(self, config):
        check_policies(self.spec)
        check_capacity(self.spec)
        check_regions(self.spec, config)

    async def deploy(self, config):
        self.validate(config)
        self.logger.info(f"Deploy Mode is {self.mode}")
        provider = self.userdata_provider or build_provider(self.spec.userdata, self.app_config.userdata)
        userdata = await asyncio.to_thread(provider.provide)
        env = self.environment(config)
        targets = {t.region: t for t in self.active_targets(config)}
        for region in targets:
            self.states[region] = DeploymentState(region=region, phase=Phase.PROVISIONING)

        def deploy_region(region):
            client = self._client(region)
            plan = self.provisioner.plan(client, self.spec, targets[region], env, config.start_timestamp)
            self.provisioner.provision(client, self.spec, targets[region], plan, config.ami, userdata, env)
            return plan

        def provisioned(region, plan):
            state = self.states[region]
            state.new_fleet_id = plan.fleet_name
            state.previous_fleet_ids = list(plan.previous_fleet_ids)
            state.phase = Phase.AWAITING_HEALTH

        self._merge(await gather_regions(deploy_region, targets), provisioned)

    def _considered_states(self, config):
        states = []
        for target in self.active_targets(config):
            state = self.states.get(target.region)
            if state is None or state.new_fleet_id is None:
                raise DeploymentError(f"[{target.region}] No new fleet for {self.get_stack_name()}; deploy first")
            states.append(state)
        return states

    async def health_checking(self, config):
        stack_name = self.get_stack_name()
        self.logger.info(f"Healthchecking for stack {stack_name} starts...")
        fleets = {s.region: s.new_fleet_id for s in self._considered_states(config)}
        snapshot = await self.poller.tick(self.clients, fleets)
        if snapshot.healthy:
            self.health_confirmed = True
        return {stack_name: snapshot.healthy}

    async def finish_additional_work(self, config):
        self._require_health("attach scaling policies")
        states = self._considered_states(config)
        for state in states:
            state.phase = Phase.FINALIZING

        def finalize_region(region):
            return self.finalizer.finalize(self._client(region), region, self.spec,
                                           self.states[region].new_fleet_id)

        self._merge(await gather_regions(finalize_region, [s.region for s in states]),
                    lambda region, handles: None)

    async def trigger_lifecycle_callbacks(self, config):
        self._require_health("run lifecycle callbacks")
        commands = self.spec.lifecycle_callbacks.pre_terminate_past_clusters
        if not commands:
            self.logger.info("No lifecycle callbacks configured")
            return
        states = [s for s in self._considered_states(config) if s.previous_fleet_ids]

        def callbacks_region(region):
            self.sequencer.run_callbacks(self._client(region), region,
                                         self.states[region].previous_fleet_ids, commands)

        self._merge(await gather_regions(callbacks_region, [s.region for s in states]),
                    lambda region, result: None)

    async def clean_previous_version(self, config):
        self._require_health("clean previous versions")
        self.logger.info(f"Delete Mode is {self.mode}")
        states = self._considered_states(config)
        for state in states:
            state.phase = Phase.DECOMMISSIONING

        def drain_region(region):
            self.sequencer.trigger_drain(self._client(region), region,
                                         self.states[region].previous_fleet_ids)

        def drained(region, result):
            self.states[region].phase = Phase.AWAITING_TERMINATION

        self._merge(await gather_regions(drain_region, [s.region for s in states]), drained)

    async def terminate_checking(self, config):
        stack_name = self.get_stack_name()
        self.logger.info(f"Termination Checking for {stack_name} starts...")
        states = self._considered_states(config)
        for state in states:
            if state.phase not in (Phase.AWAITING_TERMINATION, Phase.COMPLETE):
                raise DeploymentError(f"[{state.region}] Previous versions of {stack_name} are not being drained")

        previous = {s.region: list(s.previous_fleet_ids) for s in states}
        snapshot = await self.sequencer.tick(self.clients, previous)
        if snapshot.healthy:
            for state in states:
                state.phase = Phase.COMPLETE
        return {stack_name: snapshot.healthy}
