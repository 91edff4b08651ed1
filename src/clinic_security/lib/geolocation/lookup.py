"""Best-effort lookups that never raise to the caller.

Batches run a bounded number of concurrent lookups and pause between
batches to stay inside provider rate limits.
"""

import asyncio

from loguru import logger

from clinic_security.lib.geolocation.base import BaseGeolocator, GeolocationProviderError


async def lookup_location(geolocator: BaseGeolocator, ip: str | None) -> str | None:
    """Resolve one IP to a place name, or None on any failure.

    Args:
        geolocator: Provider to query.
        ip: Address to resolve. Empty values and ``"unknown"`` are not looked up.

    Returns:
        Human-readable place name or None.
    """
    if not ip or ip == "unknown":
        return None
    try:
        result = await geolocator.locate(ip)
    except GeolocationProviderError as e:
        logger.warning(f"Geolocation lookup failed ({e.provider_name}): {e.message}")
        return None
    return result.location if result is not None else None


async def batch_lookup_locations(geolocator: BaseGeolocator, ips: list[str]) -> dict[str, str | None]:
    """Resolve many IPs, preserving which ones failed.

    Duplicates are looked up once. Lookups within a batch run concurrently,
    bounded by a semaphore of ``geolocator.batch_size``.

    Args:
        geolocator: Provider to query.
        ips: Addresses to resolve.

    Returns:
        Mapping of every distinct input IP to its place name (None when unresolved).
    """
    unique_ips = list(dict.fromkeys(ips))
    results: dict[str, str | None] = {}
    if not unique_ips:
        return results

    batch_size = max(1, geolocator.batch_size)
    semaphore = asyncio.Semaphore(batch_size)

    async def _lookup(ip: str) -> None:
        async with semaphore:
            results[ip] = await lookup_location(geolocator, ip)

    for start in range(0, len(unique_ips), batch_size):
        if start > 0 and geolocator.batch_delay > 0:
            await asyncio.sleep(geolocator.batch_delay)
        batch = unique_ips[start : start + batch_size]
        await asyncio.gather(*(_lookup(ip) for ip in batch))

    return results
