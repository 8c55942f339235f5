"""Pytest configuration and shared fixtures."""

import asyncio
import base64
from typing import Any, Dict, List

import pytest
import pytest_asyncio
from aiohttp import web

from venue_gateway.clients.rest_gateway import VenueGateway
from venue_gateway.clients.ticker_stream import StreamHandle, StreamTransport
from venue_gateway.config.settings import GatewaySettings


TEST_API_KEY = "test-api-key"
TEST_SECRET = base64.b64encode(b"venue-gateway-test-secret").decode()
TEST_PASSPHRASE = "test-passphrase"


class FakeTickerTransport(StreamTransport):
    """In-memory ticker feed.

    ``on_open`` batches are delivered before ``open`` returns, ``later``
    batches from a background task, one per loop iteration.
    """

    def __init__(self, on_open=(), later=(), delay: float = 0.0):
        self.on_open = list(on_open)
        self.later = list(later)
        self.delay = delay
        self.opened_with: List[str] = []
        self.on_message = None
        self.handle: StreamHandle = None

    async def open(self, symbols, on_message):
        self.opened_with = list(symbols)
        self.on_message = on_message
        for batch in self.on_open:
            await on_message(batch)
        task = asyncio.create_task(self._feed(on_message))
        self.handle = StreamHandle(websocket=None, reader_task=task)
        return self.handle

    async def _feed(self, on_message):
        for batch in self.later:
            await asyncio.sleep(self.delay)
            await on_message(batch)
        # keep the subscription open until closed
        await asyncio.Event().wait()


@pytest.fixture
def test_settings() -> GatewaySettings:
    """Create test configuration."""
    return GatewaySettings(
        service_name="test-gateway",
        environment="local",
        credentials={
            'api_key': TEST_API_KEY,
            'api_secret': TEST_SECRET,
            'passphrase': TEST_PASSPHRASE,
        },
        rate_limit={'max_requests': 100, 'window_seconds': 1.0},
        stream={'ws_url': 'ws://127.0.0.1:1', 'snapshot_timeout_seconds': 0.2},
    )


@pytest.fixture
def sample_products() -> List[Dict[str, Any]]:
    """Sample products endpoint payload."""
    return [
        {
            'id': 'BTC-USD', 'base_currency': 'BTC', 'quote_currency': 'USD',
            'status': 'online', 'base_min_size': '0.0001', 'base_max_size': '1000',
            'quote_increment': '0.01', 'base_increment': '0.00000001',
        },
        {
            'id': 'eth-usd', 'base_currency': 'ETH', 'quote_currency': 'USD',
            'status': 'online', 'base_min_size': '0.001', 'base_max_size': '5000',
            'quote_increment': '0.01', 'base_increment': '0.0001',
        },
        {
            'id': 'DOGE-EUR', 'base_currency': 'DOGE', 'quote_currency': 'EUR',
            'status': 'delisted',
        },
    ]


@pytest_asyncio.fixture
async def venue_server(sample_products):
    """Local HTTP server standing in for the venue REST API.

    Yields a dict with the base ``url`` and the list of recorded ``requests``.
    """
    state: Dict[str, Any] = {
        'requests': [],
        'server_time': '2023-11-14T22:13:20.123456Z',
    }

    async def record(request: web.Request):
        state['requests'].append({
            'method': request.method,
            'path': request.path_qs,
            'headers': dict(request.headers),
            'body': await request.text(),
        })

    async def handle_time(request):
        await record(request)
        return web.json_response({'iso': state['server_time'], 'epoch': 1700000000.123})

    async def handle_products(request):
        await record(request)
        return web.json_response(sample_products)

    async def handle_currencies(request):
        await record(request)
        return web.json_response([
            {'id': 'btc', 'name': 'Bitcoin'},
            {'id': 'USD', 'name': 'United States Dollar'},
        ])

    async def handle_orders(request):
        await record(request)
        return web.json_response({'id': 'order-1', 'status': 'pending'})

    async def handle_accounts(request):
        await record(request)
        return web.json_response([{'currency': 'BTC', 'balance': '1.5'}])

    async def handle_error(request):
        await record(request)
        return web.json_response({'message': 'invalid signature'}, status=401)

    async def handle_not_json(request):
        await record(request)
        return web.Response(text="<html>maintenance</html>", content_type='text/html')

    app = web.Application()
    app.router.add_get('/time', handle_time)
    app.router.add_get('/products', handle_products)
    app.router.add_get('/currencies', handle_currencies)
    app.router.add_post('/orders', handle_orders)
    app.router.add_get('/accounts', handle_accounts)
    app.router.add_get('/unauthorized', handle_error)
    app.router.add_get('/maintenance', handle_not_json)

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, '127.0.0.1', 0)
    await site.start()
    host, port = runner.addresses[0][:2]
    state['url'] = f"http://{host}:{port}"

    yield state

    await runner.cleanup()


@pytest_asyncio.fixture
async def gateway(test_settings, venue_server):
    """VenueGateway pointed at the local venue server."""
    test_settings.venue.rest_base_url = venue_server['url']
    async with VenueGateway(test_settings, stream_transport=FakeTickerTransport()) as client:
        yield client


@pytest.fixture
def fake_transport():
    """Factory for in-memory ticker feeds."""
    return FakeTickerTransport
