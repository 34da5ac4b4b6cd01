"""
HTTP client for the public IPNI indexer.

A lookup is GET {base_url}/cid/{cid}; the response lists, per multihash, the
providers announcing it. The monitor only needs the providers' multiaddrs.
"""

from typing import Any

import httpx

from ..config import config
from ..errors import IpniLookupError
from ..logging import get_logger
from ..utils import short

logger = get_logger(__name__)

_HEADERS = {
    'User-Agent': 'filecoin-pin-health-check/1.0',
    'Accept': 'application/json',
}


def extract_provider_addrs(response: dict[str, Any]) -> list[str]:
    """Flatten MultihashResults[].ProviderResults[].Provider.Addrs."""
    addrs: list[str] = []
    for multihash_result in response.get('MultihashResults') or []:
        for provider_result in multihash_result.get('ProviderResults') or []:
            provider = provider_result.get('Provider') or {}
            addrs.extend(provider.get('Addrs') or [])
    return addrs


class IpniIndexerClient:
    """
    Async IPNI lookup client.

    Args:
        base_url: Indexer base URL (defaults to config.IPNI_INDEXER_URL)
        timeout: Per-request timeout in seconds
        client: Pre-built httpx.AsyncClient (tests inject a MockTransport)
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = (base_url or config.IPNI_INDEXER_URL).rstrip('/')
        self.timeout = timeout if timeout is not None else config.IPNI_QUERY_TIMEOUT_SECONDS
        self._client = client or httpx.AsyncClient(timeout=self.timeout, headers=_HEADERS)

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> 'IpniIndexerClient':
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def query(self, cid: str) -> list[str]:
        """
        Provider multiaddrs currently announcing ``cid``.

        Raises:
            IpniLookupError: Non-200 response, timeout, transport error or
                             a body that is not JSON
        """
        url = f'{self.base_url}/cid/{cid}'
        try:
            response = await self._client.get(url, headers=_HEADERS, timeout=self.timeout)
        except httpx.TimeoutException as exc:
            raise IpniLookupError(
                f'Request timed out after {int(self.timeout * 1000)}ms', context={'cid': cid}
            ) from exc
        except httpx.HTTPError as exc:
            raise IpniLookupError(f'Request failed: {exc}', context={'cid': cid}) from exc

        if response.status_code != 200:
            raise IpniLookupError(
                f'HTTP {response.status_code}: {response.reason_phrase}', context={'cid': cid}
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise IpniLookupError(
                f'Failed to parse JSON response: {exc}', context={'cid': cid}
            ) from exc

        addrs = extract_provider_addrs(body if isinstance(body, dict) else {})
        logger.debug('ipni_client.lookup', cid=short(cid), providers=len(addrs))
        return addrs
