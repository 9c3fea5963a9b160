from .health import collect_snapshot
from .logger import get_logger
from .tasks import gather_regions


class DecommissionSequencer:
    """Drains previous fleets and confirms they are gone.

    Scaling to zero only starts the drain. Termination is confirmed later
    by repeated calls to tick, driven by the caller.
    """

    def __init__(self, logger=None):
        self.logger = logger if logger else get_logger("decommission")

    def run_callbacks(self, client, region, fleet_ids, commands):
        if not commands:
            return
        for fleet_id in fleet_ids:
            self.logger.info(f"[{region}] Running {len(commands)} pre-terminate commands on {fleet_id}")
            client.run_lifecycle_commands(fleet_id, list(commands))

    def trigger_drain(self, client, region, fleet_ids):
        self.logger.info(f"[{region}] The number of previous versions to delete is {len(fleet_ids)}")
        for fleet_id in fleet_ids:
            client.resize_to_zero(fleet_id)
            self.logger.info(f"[{region}] Resized {fleet_id} to zero")

    async def tick(self, clients, previous):
        """previous maps each region under consideration to its previous fleet ids"""
        def check(region):
            done = True
            # Ask about every fleet so each one is logged, even after a miss
            for fleet_id in previous[region]:
                terminated = clients[region].fetch_termination_state(fleet_id)
                self.logger.info(f"[{region}] {fleet_id} terminated: {terminated}")
                done = done and terminated
            return done

        results = await gather_regions(check, previous)
        return collect_snapshot(results, self.logger, "Termination")
