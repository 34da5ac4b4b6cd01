"""Tests for the PDP piece status client."""

from datetime import datetime, timezone

import httpx
import pytest

from dealbot.errors import PieceStatusError
from dealbot.verification import PdpServerClient

SERVICE_URL = 'https://sp1.example.com/'
PIECE_CID = 'bafkzcibdpiececid'


def _client(handler):
    transport = httpx.MockTransport(handler)
    return PdpServerClient(SERVICE_URL, client=httpx.AsyncClient(transport=transport))


class TestGetPieceStatus:
    @pytest.mark.asyncio
    async def test_parses_status(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(
                200,
                json={
                    'status': 'retrieved',
                    'indexed': True,
                    'advertised': True,
                    'retrieved': True,
                    'retrievedAt': '2024-05-01T12:30:00Z',
                },
            )

        async with _client(handler) as client:
            status = await client.get_piece_status(PIECE_CID)

        assert seen == [f'https://sp1.example.com/pdp/piece/{PIECE_CID}/status']
        assert status.status == 'retrieved'
        assert status.indexed and status.advertised and status.retrieved
        assert status.retrieved_at == datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_defaults_for_missing_fields(self):
        async with _client(lambda request: httpx.Response(200, json={'status': 'pending'})) as client:
            status = await client.get_piece_status(PIECE_CID)

        assert status.status == 'pending'
        assert not status.indexed
        assert not status.advertised
        assert not status.retrieved
        assert status.retrieved_at is None

    @pytest.mark.asyncio
    async def test_naive_timestamp_is_utc(self):
        body = {'retrieved': True, 'retrievedAt': '2024-05-01T12:30:00'}

        async with _client(lambda request: httpx.Response(200, json=body)) as client:
            status = await client.get_piece_status(PIECE_CID)

        assert status.retrieved_at.tzinfo == timezone.utc

    @pytest.mark.asyncio
    async def test_http_error(self):
        async with _client(lambda request: httpx.Response(503)) as client:
            with pytest.raises(PieceStatusError, match='HTTP 503'):
                await client.get_piece_status(PIECE_CID)

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError('refused', request=request)

        async with _client(handler) as client:
            with pytest.raises(PieceStatusError, match='request failed'):
                await client.get_piece_status(PIECE_CID)

    @pytest.mark.asyncio
    async def test_bad_json(self):
        async with _client(lambda request: httpx.Response(200, content=b'not json')) as client:
            with pytest.raises(PieceStatusError):
                await client.get_piece_status(PIECE_CID)

    @pytest.mark.asyncio
    async def test_non_object_body(self):
        async with _client(lambda request: httpx.Response(200, json=['x'])) as client:
            with pytest.raises(PieceStatusError, match='Unexpected piece status body'):
                await client.get_piece_status(PIECE_CID)

    @pytest.mark.asyncio
    async def test_invalid_retrieved_at(self):
        body = {'retrieved': True, 'retrievedAt': 'yesterday'}

        async with _client(lambda request: httpx.Response(200, json=body)) as client:
            with pytest.raises(PieceStatusError, match='Invalid retrievedAt'):
                await client.get_piece_status(PIECE_CID)
