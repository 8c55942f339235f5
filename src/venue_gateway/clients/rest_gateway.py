"""Venue REST gateway with rate limiting and request signing."""

import asyncio
import aiohttp
import logging
import json
import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Optional
from urllib.parse import urlencode, urlsplit

from ..auth.signer import build_auth_headers
from ..config.settings import GatewaySettings
from ..exceptions import ConfigurationError, TransportError
from ..utils.rate_limiter import RateLimiter
from .models import AggregationResult, Currency, GatewayResponse, MarketInfo
from .snapshot import TickerSnapshotAggregator
from .ticker_stream import StreamTransport, WebSocketTickerTransport

logger = logging.getLogger(__name__)

BODY_METHODS = frozenset(['POST', 'PUT', 'PATCH'])

NONCE_STEP = Decimal('0.001')

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_FRACTION_RE = re.compile(r'(\.\d{6})\d+')


def canonical_body(payload: Mapping[str, Any]) -> str:
    """Serialize a payload with stable key order; an empty payload is an empty body."""
    if not payload:
        return ""
    return json.dumps(payload, sort_keys=True, separators=(',', ':'), default=str)


def parse_server_time(value: Any) -> Decimal:
    """Convert a server time value (ISO-8601 or epoch seconds) to epoch seconds."""
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return Decimal(str(value)).quantize(NONCE_STEP)

    text = str(value).strip()
    try:
        return Decimal(text).quantize(NONCE_STEP)
    except InvalidOperation:
        pass

    text = _FRACTION_RE.sub(r'\1', text.replace('Z', '+00:00'))
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise TransportError(f"Unparseable server time: {value!r}") from e

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)

    delta = parsed - _EPOCH
    seconds = Decimal(delta.days * 86400 + delta.seconds) + Decimal(delta.microseconds) / Decimal(1_000_000)
    return seconds.quantize(NONCE_STEP)


class VenueGateway:
    """
    REST gateway for one venue account.

    Every call takes a permit from the gateway's rate limiter. Private calls
    are signed with the configured credentials and carry a nonce derived from
    the venue's server clock.
    """

    def __init__(
        self,
        settings: GatewaySettings,
        rate_limiter: Optional[RateLimiter] = None,
        stream_transport: Optional[StreamTransport] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.settings = settings
        self.config = settings.venue
        self.credentials = settings.credentials
        self.rate_limiter = rate_limiter or RateLimiter(
            settings.rate_limit.max_requests,
            settings.rate_limit.window_seconds,
        )
        self.stream_transport = stream_transport or WebSocketTickerTransport(settings.stream)

        self.session = session
        self._owns_session = session is None

        self._last_nonce: Optional[Decimal] = None
        self._nonce_lock = asyncio.Lock()

        self.stats = {
            'requests_sent': 0,
            'signed_requests': 0,
            'errors': 0,
        }

    async def __aenter__(self):
        """Async context manager entry."""
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_seconds),
                connector=aiohttp.TCPConnector(limit=100, limit_per_host=30)
            )
            self._owns_session = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self.session and self._owns_session:
            await self.session.close()
            self.session = None

    def _require_credentials(self):
        if not self.credentials.is_configured:
            raise ConfigurationError("Private call requires api_key and api_secret to be configured")

    async def next_nonce(self) -> str:
        """
        Fetch the server time and turn it into a nonce.

        Nonces are strictly increasing for this gateway even when the server
        clock has not moved between two calls.
        """
        async with self._nonce_lock:
            data = await self.get_json(self.config.time_endpoint)
            if not isinstance(data, dict) or self.config.time_field not in data:
                raise TransportError(
                    f"Time endpoint response has no '{self.config.time_field}' field"
                )

            nonce = parse_server_time(data[self.config.time_field])
            if self._last_nonce is not None and nonce <= self._last_nonce:
                nonce = self._last_nonce + NONCE_STEP
            self._last_nonce = nonce
            return str(nonce)

    async def claim_nonce(self, nonce: Any) -> str:
        """
        Record a caller supplied nonce so it is never signed twice.

        Raises:
            ConfigurationError: The nonce is malformed or not greater than
                the last nonce signed by this gateway
        """
        try:
            value = parse_server_time(nonce)
        except TransportError as e:
            raise ConfigurationError(f"Invalid nonce: {nonce!r}") from e

        async with self._nonce_lock:
            if self._last_nonce is not None and value <= self._last_nonce:
                raise ConfigurationError(
                    f"Nonce {nonce} is not greater than the last signed nonce {self._last_nonce}"
                )
            self._last_nonce = value
        return str(nonce)

    async def call(
        self,
        method: str,
        path: str,
        payload: Optional[Mapping[str, Any]] = None,
        private: bool = False,
        base_url: Optional[str] = None,
    ) -> GatewayResponse:
        """
        Issue one request to the venue.

        For private calls the payload's ``nonce`` (fetched from the server if
        absent) becomes the signing timestamp and is not sent in the body.

        Raises:
            ConfigurationError: Private call without credentials
            SigningError: Secret key cannot be decoded
            TransportError: Network failure or non-2xx response
        """
        method = method.upper()
        payload = dict(payload or {})
        timestamp: Optional[str] = None

        if private:
            self._require_credentials()
            nonce = payload.pop('nonce', None)
            if nonce is None:
                timestamp = await self.next_nonce()
            else:
                timestamp = await self.claim_nonce(nonce)

        body = canonical_body(payload)
        request_path = path
        if method not in BODY_METHODS:
            if payload:
                separator = '&' if '?' in path else '?'
                request_path = f"{path}{separator}{urlencode(sorted(payload.items()))}"
            body = ""

        base = (base_url or self.config.rest_base_url).rstrip('/')
        url = f"{base}{request_path}"

        await self.rate_limiter.acquire()

        headers = {
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        }
        if private:
            signed_path = urlsplit(base).path + request_path
            headers.update(build_auth_headers(
                api_key=self.credentials.api_key.get_secret_value(),
                secret_key_b64=self.credentials.api_secret.get_secret_value(),
                timestamp=timestamp,
                method=method,
                path=signed_path,
                body=body,
                passphrase=(
                    self.credentials.passphrase.get_secret_value()
                    if self.credentials.passphrase else None
                ),
            ))
            self.stats['signed_requests'] += 1

        return await self._dispatch(method, url, headers, body or None)

    async def _dispatch(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        body: Optional[str],
    ) -> GatewayResponse:
        if not self.session:
            raise RuntimeError("Client not initialized. Use async context manager.")

        logger.debug(f"{method} {url}")
        self.stats['requests_sent'] += 1

        try:
            async with self.session.request(
                method,
                url,
                headers=headers,
                data=body.encode('utf-8') if body else None,
            ) as response:
                text = await response.text()
                if response.status >= 400:
                    self.stats['errors'] += 1
                    logger.error(f"{method} {url} failed with HTTP {response.status}: {text[:200]}")
                    raise TransportError(
                        f"{method} {url} returned an error",
                        status=response.status,
                        body=text,
                    )
                return GatewayResponse(
                    status=response.status,
                    headers=dict(response.headers),
                    text=text,
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.stats['errors'] += 1
            logger.error(f"{method} {url} failed: {e!r}")
            raise TransportError(f"{method} {url} failed: {e!r}") from e

    async def get_json(
        self,
        path: str,
        payload: Optional[Mapping[str, Any]] = None,
        private: bool = False,
        base_url: Optional[str] = None,
    ) -> Any:
        """GET a JSON document."""
        response = await self.call('GET', path, payload, private=private, base_url=base_url)
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON from {path}: {e}", status=response.status, body=response.text) from e

    async def get_market_symbols_metadata(self) -> List[MarketInfo]:
        """Get metadata for every market listed by the venue."""
        products = await self.get_json(self.config.products_endpoint)
        markets = [MarketInfo.from_product(product) for product in products]
        logger.info(f"Retrieved metadata for {len(markets)} markets")
        return markets

    async def get_market_symbols(self) -> List[str]:
        """Symbols of active markets; markets without a status count as active."""
        markets = await self.get_market_symbols_metadata()
        return [market.symbol for market in markets if market.is_active is not False]

    async def get_currencies(self) -> Dict[str, Currency]:
        """Get currency reference data keyed by currency code."""
        products = await self.get_json(
            self.config.currencies_endpoint,
            base_url=self.config.exchange_api_url,
        )
        currencies = {}
        for product in products:
            currency = Currency(
                code=str(product['id']).upper(),
                full_name=str(product.get('name', '')),
            )
            currencies[currency.code] = currency
        return currencies

    async def get_tickers(self, symbols: Optional[Iterable[str]] = None) -> AggregationResult:
        """
        Snapshot the ticker of every active market (or of ``symbols``).

        The venue has no single REST call for all tickers, so the snapshot is
        assembled from the websocket ticker channel with a bounded wait.
        """
        if symbols is None:
            symbols = await self.get_market_symbols()

        aggregator = TickerSnapshotAggregator(
            self.stream_transport,
            timeout_seconds=self.settings.stream.snapshot_timeout_seconds,
        )
        return await aggregator.run(symbols)
