"""
Tests for the REST API layer.

Covers:
  - Read-only status, config, endowment and staking endpoints
  - The permissionless POST /cycle trigger and its rejections
  - API key authentication on POST
  - Rate limiting (token bucket)
  - CORS middleware
  - Input validation
"""

from __future__ import annotations

import pytest
from aiohttp.test_utils import TestClient, TestServer

from aethercycle_core.api import APIServer, _TokenBucket
from aethercycle_core.config import APIConfig
from aethercycle_core.precision import SECONDS_PER_DAY, aec


# ─── Helpers ────────────────────────────────────────────────────────

def _make_test_client(protocol, api_config=None):
    """Create an aiohttp TestClient from an APIServer."""
    api = APIServer(protocol, api_config=api_config)
    return TestClient(TestServer(api.build_app()))


# ─── Read endpoints ─────────────────────────────────────────────────

class TestReadEndpoints:

    @pytest.mark.asyncio
    async def test_health(self, protocol):
        async with _make_test_client(protocol) as client:
            resp = await client.get("/health")
            assert resp.status == 200
            data = await resp.json()
            assert data["ok"] is True
            assert data["endowment"]["status"] == "Operational"

    @pytest.mark.asyncio
    async def test_health_degraded(self, protocol, clock):
        clock.advance(181 * SECONDS_PER_DAY)
        async with _make_test_client(protocol) as client:
            resp = await client.get("/health")
            assert resp.status == 503
            data = await resp.json()
            assert data["endowment"]["status"] == "Stalled"

    @pytest.mark.asyncio
    async def test_status(self, protocol):
        async with _make_test_client(protocol) as client:
            resp = await client.get("/status")
            assert resp.status == 200
            data = await resp.json()
            assert data["engine"]["address"] == "engine"
            assert set(data["pools"]) == {"lp", "token", "nft"}
            assert data["endowment"]["current_balance"] == aec(311_111_111)

    @pytest.mark.asyncio
    async def test_config(self, protocol):
        async with _make_test_client(protocol) as client:
            resp = await client.get("/config")
            data = await resp.json()
            assert data["burn_bps"] == 2_000
            assert data["lp_pool"] == protocol.lp_pool.address

    @pytest.mark.asyncio
    async def test_cycle_outcome(self, taxed_protocol):
        async with _make_test_client(taxed_protocol) as client:
            resp = await client.get("/cycle/outcome")
            data = await resp.json()
            assert data["pending_tax"] == aec(2_000)
            assert data["can_process"] is True

    @pytest.mark.asyncio
    async def test_endowment(self, protocol, clock):
        clock.advance(30 * SECONDS_PER_DAY)
        protocol.engine.run_cycle("alice")
        async with _make_test_client(protocol) as client:
            resp = await client.get("/endowment?limit=5")
            data = await resp.json()
            assert data["release_count"] == 1
            assert len(data["history"]) == 1
            assert data["apr_bps"] == 584

    @pytest.mark.asyncio
    async def test_endowment_suggestion(self, protocol, clock):
        async with _make_test_client(protocol) as client:
            resp = await client.get("/endowment/suggestion")
            data = await resp.json()
            assert data == {"should_release": False, "amount": 0,
                            "periods_waiting": 0, "efficiency_score": 0}

    @pytest.mark.asyncio
    async def test_staking_pool(self, protocol):
        async with _make_test_client(protocol) as client:
            resp = await client.get("/staking/lp")
            assert resp.status == 200
            data = await resp.json()
            assert data["address"] == protocol.lp_pool.address
            assert len(data["tiers"]) == 5
            assert data["remaining_base_rewards"] == protocol.lp_pool.base_allocation

    @pytest.mark.asyncio
    async def test_unknown_pool(self, protocol):
        async with _make_test_client(protocol) as client:
            resp = await client.get("/staking/bogus")
            assert resp.status == 404

    @pytest.mark.asyncio
    async def test_engine_position(self, taxed_protocol):
        taxed_protocol.engine.run_cycle("alice")
        async with _make_test_client(taxed_protocol) as client:
            resp = await client.get("/staking/lp/engine")
            data = await resp.json()
            assert data["eternal"] is True
            assert data["principal"] > 0
            assert data["can_withdraw"] is False

    @pytest.mark.asyncio
    async def test_events(self, taxed_protocol):
        taxed_protocol.engine.run_cycle("alice")
        async with _make_test_client(taxed_protocol) as client:
            resp = await client.get("/events?name=CycleProcessed")
            data = await resp.json()
            assert data["count"] == 1
            assert data["events"][0]["fields"]["caller"] == "alice"
            resp = await client.get("/events?limit=3")
            data = await resp.json()
            assert data["count"] == 3

    @pytest.mark.asyncio
    async def test_events_bad_limit(self, protocol):
        async with _make_test_client(protocol) as client:
            resp = await client.get("/events?limit=abc")
            assert resp.status == 400


# ─── Cycle trigger ──────────────────────────────────────────────────

class TestCycleTrigger:

    @pytest.mark.asyncio
    async def test_skipped(self, protocol):
        async with _make_test_client(protocol) as client:
            resp = await client.post("/cycle", json={"caller": "alice"})
            assert resp.status == 200
            data = await resp.json()
            assert data["status"] == "skipped"
            assert data["report"]["skip_reason"] == "Below minimum"

    @pytest.mark.asyncio
    async def test_processed_then_cooldown(self, taxed_protocol):
        async with _make_test_client(taxed_protocol) as client:
            resp = await client.post("/cycle", json={"caller": "alice"})
            assert resp.status == 200
            data = await resp.json()
            assert data["status"] == "processed"
            assert data["report"]["caller_reward"] == aec(2)

            resp = await client.post("/cycle", json={"caller": "bob"})
            assert resp.status == 429
            data = await resp.json()
            assert data["cooldown_remaining"] == 3_600
        assert taxed_protocol.aec.balance_of("bob") == 0

    @pytest.mark.asyncio
    async def test_busy_engine(self, protocol):
        protocol.engine.processing_in_progress = True
        async with _make_test_client(protocol) as client:
            resp = await client.post("/cycle", json={"caller": "alice"})
            assert resp.status == 409

    @pytest.mark.asyncio
    async def test_invalid_json(self, protocol):
        async with _make_test_client(protocol) as client:
            resp = await client.post("/cycle", data="not json",
                                     headers={"Content-Type": "application/json"})
            assert resp.status == 400

    @pytest.mark.asyncio
    async def test_missing_caller(self, protocol):
        async with _make_test_client(protocol) as client:
            resp = await client.post("/cycle", json={"who": "alice"})
            assert resp.status == 400
            resp = await client.post("/cycle", json=["alice"])
            assert resp.status == 400

    @pytest.mark.asyncio
    async def test_caller_too_long(self, protocol):
        async with _make_test_client(protocol) as client:
            resp = await client.post("/cycle", json={"caller": "x" * 500})
            assert resp.status == 400


# ─── Security middleware ────────────────────────────────────────────

class TestApiKey:

    @pytest.mark.asyncio
    async def test_post_requires_key(self, protocol):
        cfg = APIConfig(api_key="secret", rate_limit_rpm=0)
        async with _make_test_client(protocol, cfg) as client:
            resp = await client.post("/cycle", json={"caller": "alice"})
            assert resp.status == 401
            resp = await client.post("/cycle", json={"caller": "alice"},
                                     headers={"X-API-Key": "wrong"})
            assert resp.status == 401
            resp = await client.post("/cycle", json={"caller": "alice"},
                                     headers={"X-API-Key": "secret"})
            assert resp.status == 200

    @pytest.mark.asyncio
    async def test_get_open(self, protocol):
        cfg = APIConfig(api_key="secret", rate_limit_rpm=0)
        async with _make_test_client(protocol, cfg) as client:
            resp = await client.get("/status")
            assert resp.status == 200


class TestRateLimit:

    def test_token_bucket(self):
        bucket = _TokenBucket(rpm=2)
        assert bucket.allow("1.2.3.4")
        assert bucket.allow("1.2.3.4")
        assert not bucket.allow("1.2.3.4")
        assert bucket.allow("5.6.7.8")

    def test_unlimited(self):
        bucket = _TokenBucket(rpm=0)
        assert all(bucket.allow("ip") for _ in range(1_000))

    @pytest.mark.asyncio
    async def test_middleware(self, protocol):
        cfg = APIConfig(rate_limit_rpm=2)
        async with _make_test_client(protocol, cfg) as client:
            assert (await client.get("/health")).status == 200
            assert (await client.get("/health")).status == 200
            resp = await client.get("/health")
            assert resp.status == 429
            assert resp.headers["Retry-After"] == "5"


class TestCors:

    @pytest.mark.asyncio
    async def test_allowed_origin(self, protocol):
        cfg = APIConfig(cors_origins=["http://dash.local"], rate_limit_rpm=0)
        async with _make_test_client(protocol, cfg) as client:
            resp = await client.get("/status", headers={"Origin": "http://dash.local"})
            assert resp.headers["Access-Control-Allow-Origin"] == "http://dash.local"

    @pytest.mark.asyncio
    async def test_other_origin(self, protocol):
        cfg = APIConfig(cors_origins=["http://dash.local"], rate_limit_rpm=0)
        async with _make_test_client(protocol, cfg) as client:
            resp = await client.get("/status", headers={"Origin": "http://evil.local"})
            assert "Access-Control-Allow-Origin" not in resp.headers

    @pytest.mark.asyncio
    async def test_wildcard_ignored(self, protocol):
        cfg = APIConfig(cors_origins=["*"], rate_limit_rpm=0)
        async with _make_test_client(protocol, cfg) as client:
            resp = await client.get("/status", headers={"Origin": "http://any.local"})
            assert "Access-Control-Allow-Origin" not in resp.headers
