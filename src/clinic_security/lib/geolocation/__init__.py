"""Geolocation library: best-effort IP to place resolution.

Public API:
    - BaseGeolocator: Abstract provider interface
    - GeolocationResult: Resolved place
    - GeolocationProviderError: Transport or service failure
    - IpApiGeolocator: ip-api.com provider
    - is_local_address: Private/loopback/link-local/reserved check
    - lookup_location / batch_lookup_locations: Error-swallowing wrappers
"""

from clinic_security.lib.geolocation.base import (
    LOCAL_NETWORK_LABEL,
    BaseGeolocator,
    GeolocationProviderError,
    GeolocationResult,
    is_local_address,
)
from clinic_security.lib.geolocation.ip_api import IpApiGeolocator
from clinic_security.lib.geolocation.lookup import batch_lookup_locations, lookup_location

__all__ = [
    "LOCAL_NETWORK_LABEL",
    "BaseGeolocator",
    "GeolocationProviderError",
    "GeolocationResult",
    "IpApiGeolocator",
    "batch_lookup_locations",
    "is_local_address",
    "lookup_location",
]
