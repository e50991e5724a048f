"""
REST / HTTP API server for an AetherCycle protocol instance.

Built on ``aiohttp`` and started alongside the keeper loop.

Endpoints
---------
GET  /health                      Engine + endowment health check
GET  /status                      Full protocol summary
GET  /config                      Engine configuration and addresses
GET  /cycle/outcome               Projection of the next cycle's split
POST /cycle                       Run a cycle (permissionless trigger)
GET  /endowment                   Endowment status and recent releases
GET  /endowment/suggestion        Current release suggestion
GET  /staking/{pool}              Pool summary (lp, token, nft)
GET  /staking/{pool}/{address}    One account's position in a pool
GET  /events                      Recent events across components

Security
--------
- API-key authentication on POST endpoints via ``X-API-Key`` header only.
  Timing-safe comparison via ``hmac.compare_digest``.
- Per-IP token-bucket rate limiter (configurable RPM).
- CORS middleware (origins configurable via ``cors_origins``).
- Request body size cap (``max_body_bytes``).

Usage:
    api = APIServer(protocol, host="127.0.0.1", port=8090)
    await api.start()    # call inside existing event loop
    ...
    await api.stop()
"""

from __future__ import annotations

import hmac
import json
import logging
import time
from collections import defaultdict
from typing import TYPE_CHECKING, Any

from aiohttp import web

from aethercycle_core.engine import CooldownNotElapsed
from aethercycle_core.errors import InvariantViolation, ReentrancyError

if TYPE_CHECKING:
    from aethercycle_core.config import APIConfig
    from aethercycle_core.protocol import AetherCycleProtocol

logger = logging.getLogger("aethercycle.api")

MAX_ADDRESS_LENGTH = 128
MAX_EVENTS = 500


# ═══════════════════════════════════════════════════════════════════
#  Input helpers
# ═══════════════════════════════════════════════════════════════════

def _safe_int(value: Any, name: str = "value") -> int:
    """Convert *value* to int, rejecting non-integer input."""
    try:
        return int(value)
    except (TypeError, ValueError):
        raise web.HTTPBadRequest(text=f"{name} must be an integer")


def _safe_address(value: Any, name: str = "address") -> str:
    if not isinstance(value, str) or not value.strip():
        raise web.HTTPBadRequest(text=f"{name} must be a non-empty string")
    value = value.strip()
    if len(value) > MAX_ADDRESS_LENGTH:
        raise web.HTTPBadRequest(text=f"{name} too long")
    return value


def _json_dumps(obj: Any) -> str:
    """JSON serialiser that handles non-standard types."""
    return json.dumps(obj, default=str)


def _json(data: Any, status: int = 200) -> web.Response:
    return web.json_response(data, status=status, dumps=_json_dumps)


# ═══════════════════════════════════════════════════════════════════
#  Rate Limiter (per-IP token bucket)
# ═══════════════════════════════════════════════════════════════════

class _TokenBucket:
    """Simple per-IP token-bucket rate limiter."""

    __slots__ = ("_buckets", "_rpm")

    def __init__(self, rpm: int):
        self._rpm = rpm  # 0 = unlimited
        # ip -> (tokens, last_refill_timestamp)
        self._buckets: dict[str, list[float]] = defaultdict(
            lambda: [float(rpm), time.monotonic()])

    def allow(self, ip: str) -> bool:
        if self._rpm <= 0:
            return True
        bucket = self._buckets[ip]
        now = time.monotonic()
        elapsed = now - bucket[1]
        bucket[0] = min(float(self._rpm), bucket[0] + elapsed * (self._rpm / 60.0))
        bucket[1] = now
        if bucket[0] >= 1.0:
            bucket[0] -= 1.0
            return True
        return False


# ═══════════════════════════════════════════════════════════════════
#  Middleware factories
# ═══════════════════════════════════════════════════════════════════

def _make_rate_limit_middleware(bucket: _TokenBucket):
    """aiohttp middleware that enforces per-IP rate limits."""

    @web.middleware
    async def rate_limit_middleware(request: web.Request, handler):
        ip = request.remote or "unknown"
        if not bucket.allow(ip):
            raise web.HTTPTooManyRequests(
                text="Rate limit exceeded. Try again later.",
                headers={"Retry-After": "5"},
            )
        return await handler(request)

    return rate_limit_middleware


def _make_api_key_middleware(api_key: str):
    """aiohttp middleware that requires an API key on POST requests.

    The key is read from the ``X-API-Key`` header only.
    """

    @web.middleware
    async def api_key_middleware(request: web.Request, handler):
        if request.method == "POST":
            key = request.headers.get("X-API-Key", "")
            if not hmac.compare_digest(key, api_key):
                raise web.HTTPUnauthorized(text="Invalid or missing API key")
        return await handler(request)

    return api_key_middleware


def _make_cors_middleware(origins: list[str]):
    """aiohttp middleware that adds CORS headers for listed origins only."""

    allowed = set(origins) if origins else set()
    allowed.discard("*")

    @web.middleware
    async def cors_middleware(request: web.Request, handler):
        origin = request.headers.get("Origin", "")
        if request.method == "OPTIONS":
            resp = web.Response(status=204)
        else:
            resp = await handler(request)

        if origin in allowed:
            resp.headers["Access-Control-Allow-Origin"] = origin
            resp.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
            resp.headers["Access-Control-Allow-Headers"] = "Content-Type, X-API-Key"
            resp.headers["Access-Control-Max-Age"] = "3600"
        return resp

    return cors_middleware


def build_middlewares(cfg: APIConfig | None) -> list:
    middlewares: list = []
    if cfg is None:
        return middlewares
    if cfg.rate_limit_rpm > 0:
        middlewares.append(_make_rate_limit_middleware(_TokenBucket(cfg.rate_limit_rpm)))
    if cfg.cors_origins:
        middlewares.append(_make_cors_middleware(cfg.cors_origins))
    if cfg.api_key:
        middlewares.append(_make_api_key_middleware(cfg.api_key))
    return middlewares


class APIServer:
    """Thin aiohttp wrapper around a deployed AetherCycleProtocol."""

    def __init__(
        self,
        protocol: AetherCycleProtocol,
        host: str = "127.0.0.1",
        port: int = 8090,
        *,
        api_config: APIConfig | None = None,
    ):
        self.protocol = protocol
        self.host = host
        self.port = port
        self._api_config = api_config
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    # ── lifecycle ────────────────────────────────────────────────

    def build_app(self) -> web.Application:
        max_body = self._api_config.max_body_bytes if self._api_config else 65_536
        app = web.Application(
            middlewares=build_middlewares(self._api_config),
            client_max_size=max_body,
        )
        self._register_routes(app)
        self._app = app
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"API listening on http://{self.host}:{self.port}")

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()

    # ── routes ───────────────────────────────────────────────────

    def _register_routes(self, app: web.Application) -> None:
        app.router.add_get("/health", self._health)
        app.router.add_get("/status", self._status)
        app.router.add_get("/config", self._config)
        app.router.add_get("/cycle/outcome", self._cycle_outcome)
        app.router.add_post("/cycle", self._run_cycle)
        app.router.add_get("/endowment", self._endowment)
        app.router.add_get("/endowment/suggestion", self._endowment_suggestion)
        app.router.add_get("/staking/{pool}", self._staking_pool)
        app.router.add_get("/staking/{pool}/{address}", self._staking_position)
        app.router.add_get("/events", self._events)

    # ── handlers ─────────────────────────────────────────────────

    async def _health(self, _request: web.Request) -> web.Response:
        engine = self.protocol.engine.health_check()
        endowment = self.protocol.endowment.health_check()
        healthy = engine["is_healthy"] and endowment["is_healthy"]
        return _json({
            "ok": healthy,
            "engine": engine,
            "endowment": endowment,
        }, status=200 if healthy else 503)

    async def _status(self, _request: web.Request) -> web.Response:
        return _json(self.protocol.status())

    async def _config(self, _request: web.Request) -> web.Response:
        return _json(self.protocol.engine.get_config())

    async def _cycle_outcome(self, _request: web.Request) -> web.Response:
        return _json(self.protocol.engine.calculate_cycle_outcome())

    async def _run_cycle(self, request: web.Request) -> web.Response:
        """
        POST /cycle
        Body: {"caller": "<address>"}
        """
        try:
            body = await request.json()
        except Exception as exc:
            raise web.HTTPBadRequest(text="Invalid JSON body") from exc
        if not isinstance(body, dict):
            raise web.HTTPBadRequest(text="JSON object required")
        caller = _safe_address(body.get("caller"), "caller")

        try:
            report = self.protocol.engine.run_cycle(caller)
        except CooldownNotElapsed as exc:
            return _json({
                "status": "rejected",
                "error": str(exc),
                "cooldown_remaining": self.protocol.engine.cooldown_remaining(),
            }, status=429)
        except ReentrancyError as exc:
            return _json({"status": "rejected", "error": str(exc)}, status=409)
        except InvariantViolation as exc:
            logger.error(f"Cycle aborted by invariant violation: {exc}")
            return _json({"status": "aborted", "error": str(exc)}, status=500)

        return _json({
            "status": "skipped" if report.skipped else "processed",
            "report": report.to_dict(),
        })

    async def _endowment(self, request: web.Request) -> web.Response:
        limit = max(0, min(_safe_int(request.query.get("limit", 10), "limit"), 100))
        endowment = self.protocol.endowment
        history = endowment.get_release_history(max(0, len(endowment.history) - limit), limit)
        return _json({
            **endowment.get_endowment_status(),
            "health": endowment.health_check(),
            "apr_bps": endowment.calculate_apr(),
            "history": history,
        })

    async def _endowment_suggestion(self, _request: web.Request) -> web.Response:
        return _json(self.protocol.endowment.suggest_optimal_release()._asdict())

    def _pool(self, request: web.Request):
        name = request.match_info["pool"]
        try:
            return self.protocol.pool(name)
        except KeyError:
            raise web.HTTPNotFound(text=f"Unknown pool: {name}")

    async def _staking_pool(self, request: web.Request) -> web.Response:
        pool = self._pool(request)
        return _json({
            **pool.get_pool_summary(),
            "tiers": [t.to_dict() for t in pool.tiers],
        })

    async def _staking_position(self, request: web.Request) -> web.Response:
        pool = self._pool(request)
        address = _safe_address(request.match_info["address"])
        return _json(pool.get_stake_info(address))

    async def _events(self, request: web.Request) -> web.Response:
        limit = _safe_int(request.query.get("limit", 50), "limit")
        limit = max(1, min(limit, MAX_EVENTS))
        name = request.query.get("name")
        events = self.protocol.recent_events(MAX_EVENTS if name else limit)
        if name:
            events = [e for e in events if e["name"] == name][-limit:]
        return _json({"events": events, "count": len(events)})
