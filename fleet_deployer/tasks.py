import asyncio


async def gather_regions(func, regions):
    """Run func(region) for every region in parallel worker threads.

    Returns a dict of region -> result, where a failed region maps to the
    exception it raised. Nothing is written to shared state here; callers
    merge the returned results once every region has finished.
    """
    regions = list(regions)
    results = await asyncio.gather(
        *(asyncio.to_thread(func, region) for region in regions),
        return_exceptions=True,
    )
    return dict(zip(regions, results))
