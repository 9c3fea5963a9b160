from .errors import CollaboratorCallError
from .logger import get_logger
from .models import HealthSnapshot
from .tasks import gather_regions


def collect_snapshot(results, logger, what):
    """Fold per-region poll results into a snapshot.

    A CollaboratorCallError leaves its region unresolved for this tick;
    any other exception is a bug and propagates.
    """
    snapshot = HealthSnapshot()
    for region, result in results.items():
        if isinstance(result, CollaboratorCallError):
            logger.warning(f"[{region}] {what} check unresolved this tick: {result}")
            snapshot.regions[region] = False
            snapshot.errors[region] = str(result)
        elif isinstance(result, BaseException):
            raise result
        else:
            snapshot.regions[region] = bool(result)
    snapshot.healthy = bool(snapshot.regions) and all(snapshot.regions.values())
    return snapshot


class HealthConvergencePoller:
    """Reports the health of newly created fleets, one tick per call"""

    def __init__(self, logger=None):
        self.logger = logger if logger else get_logger("health")

    async def tick(self, clients, fleets):
        """fleets maps each region under consideration to its new fleet id"""
        def check(region):
            healthy = clients[region].fetch_health(fleets[region])
            self.logger.info(f"[{region}] {fleets[region]} healthy: {healthy}")
            return healthy

        results = await gather_regions(check, fleets)
        snapshot = collect_snapshot(results, self.logger, "Health")
        done = sum(1 for ok in snapshot.regions.values() if ok)
        self.logger.info(f"Healthy regions: {done}/{len(snapshot.regions)}")
        return snapshot
