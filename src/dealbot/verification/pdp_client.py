"""
Client for a storage provider's PDP piece status endpoint.

GET {service_url}/pdp/piece/{piece_cid}/status returns
{status, indexed, advertised, retrieved, retrievedAt}.
"""

from datetime import datetime, timezone

import httpx

from ..config import config
from ..errors import PieceStatusError
from .types import PieceStatus


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    # fromisoformat() rejects the trailing 'Z' before Python 3.11
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class PdpServerClient:
    """Async piece status client bound to one provider."""

    def __init__(
        self,
        service_url: str,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.service_url = service_url.rstrip('/')
        self.timeout = timeout if timeout is not None else config.PDP_REQUEST_TIMEOUT_SECONDS
        self._client = client or httpx.AsyncClient(timeout=self.timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> 'PdpServerClient':
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def get_piece_status(self, piece_cid: str) -> PieceStatus:
        """
        Current status of one piece.

        Raises:
            PieceStatusError: Transport failure, non-2xx response or bad body
        """
        url = f'{self.service_url}/pdp/piece/{piece_cid}/status'
        try:
            response = await self._client.get(url, headers={'Accept': 'application/json'})
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as exc:
            raise PieceStatusError(
                f'HTTP {exc.response.status_code}',
                context={'piece_cid': piece_cid},
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise PieceStatusError(
                f'Piece status request failed: {exc}',
                context={'piece_cid': piece_cid},
            ) from exc

        if not isinstance(body, dict):
            raise PieceStatusError('Unexpected piece status body', context={'piece_cid': piece_cid})

        try:
            retrieved_at = _parse_timestamp(body.get('retrievedAt'))
        except (TypeError, ValueError) as exc:
            raise PieceStatusError(
                f'Invalid retrievedAt: {exc}', context={'piece_cid': piece_cid}
            ) from exc

        return PieceStatus(
            status=str(body.get('status') or ''),
            indexed=bool(body.get('indexed')),
            advertised=bool(body.get('advertised')),
            retrieved=bool(body.get('retrieved')),
            retrieved_at=retrieved_at,
        )
