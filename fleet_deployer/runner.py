import asyncio
import time

from .errors import ConvergenceTimeout
from .logger import get_logger


class ReleaseRunner:
    """Drives deployers through their lifecycle and owns the polling timer.

    Deployers are moved through each phase together, so every stack of a
    release is healthy before any stack starts cleaning up.
    """

    def __init__(self, deployers, sleep=asyncio.sleep, clock=time.monotonic, logger=None):
        self.deployers = list(deployers)
        self.sleep = sleep
        self.clock = clock
        self.logger = logger if logger else get_logger("runner")

    async def _each(self, phase, config):
        for deployer in self.deployers:
            await getattr(deployer, phase)(config)

    async def _wait_for(self, phase, config):
        deadline = self.clock() + config.timeout * 60
        done = {}
        while True:
            for deployer in self.deployers:
                name = deployer.get_stack_name()
                if done.get(name):
                    continue
                done.update(await getattr(deployer, phase)(config))

            pending = [d.get_stack_name() for d in self.deployers if not done.get(d.get_stack_name())]
            if not pending:
                self.logger.info(f"{phase} finished for every stack")
                return
            if self.clock() >= deadline:
                raise ConvergenceTimeout(
                    f"{phase} did not finish within {config.timeout} minutes: {', '.join(pending)}"
                )
            self.logger.info(f"Waiting on {', '.join(pending)}; next check in {config.poll_interval}s")
            await self.sleep(config.poll_interval)

    async def run(self, config):
        for deployer in self.deployers:
            deployer.validate(config)
        await self._each("deploy", config)
        await self._wait_for("health_checking", config)
        await self._each("finish_additional_work", config)
        await self._each("trigger_lifecycle_callbacks", config)
        await self._each("clean_previous_version", config)
        await self._wait_for("terminate_checking", config)
        self.logger.info("Release complete")
