"""Abstract base geolocator interface for pluggable provider support."""

import ipaddress
from abc import ABC, abstractmethod
from dataclasses import dataclass

LOCAL_NETWORK_LABEL = "Local Network"


@dataclass
class GeolocationResult:
    """Place resolved for an IP address."""

    country: str | None = None
    region: str | None = None
    city: str | None = None
    label: str | None = None

    @property
    def location(self) -> str | None:
        """Human-readable place name, most specific part first."""
        if self.label:
            return self.label
        parts = [part for part in (self.city, self.region, self.country) if part]
        return ", ".join(parts) or None


class GeolocationProviderError(Exception):
    """Raised when a geolocation provider experiences a transport or service error.

    Args:
        provider_name: Name of the failing provider.
        message: Human-readable error description.
        status_code: Optional HTTP status code from the provider.
    """

    def __init__(self, provider_name: str, message: str, status_code: int | None = None) -> None:
        self.provider_name = provider_name
        self.message = message
        self.status_code = status_code
        super().__init__(f"{provider_name}: {message}")


def is_local_address(ip: str) -> bool:
    """Whether an IP is private, loopback, link-local or reserved.

    Unparseable input is not local; the provider decides what to do with it.
    """
    try:
        address = ipaddress.ip_address(ip.strip())
    except ValueError:
        return False
    return address.is_private or address.is_loopback or address.is_link_local or address.is_reserved


class BaseGeolocator(ABC):
    """Abstract geolocator interface. All providers must implement this."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Unique name identifying this provider."""

    @property
    def batch_size(self) -> int:
        """Maximum number of concurrent lookups per batch."""
        return 10

    @property
    def batch_delay(self) -> float:
        """Delay in seconds between batches (for rate-limited providers)."""
        return 0.0

    @abstractmethod
    async def locate(self, ip: str) -> GeolocationResult | None:
        """Resolve a single IP address.

        Args:
            ip: IPv4 or IPv6 address.

        Returns:
            GeolocationResult or None if the provider has no answer.

        Raises:
            GeolocationProviderError: On transport or service errors.
        """
