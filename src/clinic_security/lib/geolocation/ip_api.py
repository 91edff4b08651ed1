"""ip-api.com geolocation provider.

Uses the free JSON endpoint (http://ip-api.com/docs/api:json) with a field
projection. Free tier is rate-limited to 45 requests per minute.
"""

import httpx
from loguru import logger

from clinic_security.lib.geolocation.base import (
    LOCAL_NETWORK_LABEL,
    BaseGeolocator,
    GeolocationProviderError,
    GeolocationResult,
    is_local_address,
)

IP_API_URL = "http://ip-api.com/json"
IP_API_FIELDS = "status,message,country,regionName,city"
DEFAULT_TIMEOUT = 3.0


class IpApiGeolocator(BaseGeolocator):
    """ip-api.com geolocation provider."""

    def __init__(
        self,
        base_url: str = IP_API_URL,
        timeout: float = DEFAULT_TIMEOUT,
        batch_size: int = 10,
        batch_delay: float = 1.5,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._batch_size = batch_size
        self._batch_delay = batch_delay

    @property
    def provider_name(self) -> str:
        return "ip-api"

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @property
    def batch_delay(self) -> float:
        return self._batch_delay

    async def locate(self, ip: str) -> GeolocationResult | None:
        """Resolve an IP address using the ip-api.com JSON endpoint.

        Private, loopback, link-local and reserved addresses resolve to
        "Local Network" without a network call.

        Raises:
            GeolocationProviderError: On transport or service errors.
        """
        if is_local_address(ip):
            return GeolocationResult(label=LOCAL_NETWORK_LABEL)

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(f"{self._base_url}/{ip}", params={"fields": IP_API_FIELDS})
                response.raise_for_status()

            data = response.json()
            return self._parse_response(data)

        except httpx.TimeoutException as e:
            logger.warning("ip-api geolocation timeout")
            raise GeolocationProviderError("ip-api", "Geolocation request timed out") from e
        except httpx.HTTPStatusError as e:
            logger.warning(f"ip-api geolocation HTTP error {e.response.status_code}")
            raise GeolocationProviderError(
                "ip-api",
                f"Provider returned HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.ConnectError as e:
            logger.warning("ip-api geolocation connection error")
            raise GeolocationProviderError("ip-api", "Connection to geolocation provider failed") from e
        except GeolocationProviderError:
            raise
        except Exception as e:
            logger.exception("ip-api geolocation unexpected error")
            raise GeolocationProviderError("ip-api", f"Unexpected error: {e}") from e

    def _parse_response(self, data: dict) -> GeolocationResult | None:
        """Parse an ip-api.com response into a GeolocationResult.

        Args:
            data: Raw JSON object returned by the endpoint.

        Returns:
            GeolocationResult, or None when the provider reports ``status: fail``
            (reserved range, invalid query, private range it refuses to answer).
        """
        if not isinstance(data, dict):
            raise GeolocationProviderError("ip-api", "Failed to parse response: expected a JSON object")
        if data.get("status") != "success":
            logger.debug(f"ip-api returned no result: {data.get('message')}")
            return None
        result = GeolocationResult(
            country=data.get("country") or None,
            region=data.get("regionName") or None,
            city=data.get("city") or None,
        )
        if result.location is None:
            return None
        return result
