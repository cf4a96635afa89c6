"""Tests for Dispatcher using a mocked upstream (httpx.MockTransport)."""

import json

import httpx
import pytest

from account_rotator.client.dispatcher import Dispatcher
from account_rotator.core.config import RotatorSettings
from account_rotator.core.errors import (
    CredentialRejectedError,
    NoUsableAccountError,
    QuotaExhaustedError,
    TransientIOError,
    VerificationFailedError,
)
from account_rotator.core.types import (
    AccountStatus,
    InboundRequest,
    QuotaFallbackConfig,
)

BASE = "https://cloudcode-pa.googleapis.com/v1beta"


def _quota_body(reason="QUOTA_EXHAUSTED", retry_delay="30s"):
    return {
        "error": {
            "code": 429,
            "message": "Resource has been exhausted",
            "status": "RESOURCE_EXHAUSTED",
            "details": [
                {
                    "@type": "type.googleapis.com/google.rpc.ErrorInfo",
                    "reason": reason,
                },
                {
                    "@type": "type.googleapis.com/google.rpc.RetryInfo",
                    "retryDelay": retry_delay,
                },
            ],
        }
    }


class Upstream:
    """Scripted upstream: returns queued responses and records requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.responses.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _ok():
    return httpx.Response(200, json={"candidates": []})


def _gemini_request(model="gemini-3-flash"):
    return InboundRequest(
        url=f"{BASE}/models/{model}:generateContent",
        body={"contents": [{"role": "user", "parts": [{"text": "hi"}]}]},
        headers={"x-api-key": "caller"},
    )


@pytest.fixture
def settings():
    return RotatorSettings(quota_fallback=True, cli_first=False)


def _dispatcher(registry, upstream, settings):
    client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    return Dispatcher(registry, client, settings), client


# ==========================================================================
# Success and selection
# ==========================================================================


class TestSuccess:
    async def test_success_records_use(self, registry, settings, two_accounts, clock):
        first, _ = two_accounts
        upstream = Upstream(_ok())
        dispatcher, client = _dispatcher(registry, upstream, settings)
        async with client:
            response = await dispatcher.dispatch(_gemini_request())

        assert response.status_code == 200
        assert first.status == AccountStatus.ACTIVE
        assert first.last_used == clock.now
        sent = upstream.requests[0]
        assert "/models/antigravity-gemini-3-flash:" in str(sent.url)
        assert sent.headers["authorization"] == "Bearer ya29.access-token-1"
        assert "x-api-key" not in sent.headers

    async def test_cli_first_starts_with_cli(self, registry, two_accounts):
        upstream = Upstream(_ok())
        dispatcher, client = _dispatcher(
            registry, upstream, RotatorSettings(cli_first=True)
        )
        async with client:
            await dispatcher.dispatch(_gemini_request())

        sent = upstream.requests[0]
        assert "/models/gemini-3-flash:" in str(sent.url)
        assert sent.headers["x-goog-api-key"] == "ya29.access-token-1"

    async def test_streaming_response_is_left_open(self, registry, settings, two_accounts):
        upstream = Upstream(httpx.Response(200, content=b"data: {}\n\n"))
        dispatcher, client = _dispatcher(registry, upstream, settings)
        request = InboundRequest(url=f"{BASE}/models/gemini-3-flash:streamGenerateContent")
        async with client:
            response = await dispatcher.dispatch(request)
            body = await response.aread()
        assert body == b"data: {}\n\n"

    async def test_no_account(self, registry, settings):
        dispatcher, client = _dispatcher(registry, Upstream(), settings)
        async with client:
            with pytest.raises(NoUsableAccountError):
                await dispatcher.dispatch(_gemini_request())


# ==========================================================================
# Quota fallback
# ==========================================================================


class TestQuotaFallback:
    async def test_gemini_falls_back_to_cli_on_same_account(
        self, registry, settings, two_accounts, clock
    ):
        first, _ = two_accounts
        upstream = Upstream(httpx.Response(429, json=_quota_body()), _ok())
        dispatcher, client = _dispatcher(registry, upstream, settings)
        async with client:
            response = await dispatcher.dispatch(_gemini_request())

        assert response.status_code == 200
        assert len(upstream.requests) == 2
        retry = upstream.requests[1]
        assert "/models/gemini-3-flash:" in str(retry.url)
        assert retry.headers["x-goog-api-key"] == "ya29.access-token-1"
        assert registry.ledger.remaining(first.index, "gemini-antigravity", clock.now) == 30_000
        assert not registry.ledger.is_exhausted(first.index, "gemini-cli", clock.now)

    async def test_account_wide_limit_moves_to_next_account(
        self, registry, settings, two_accounts
    ):
        upstream = Upstream(
            httpx.Response(429, json=_quota_body(reason="RATE_LIMIT_EXCEEDED")), _ok()
        )
        dispatcher, client = _dispatcher(registry, upstream, settings)
        async with client:
            await dispatcher.dispatch(_gemini_request())

        assert upstream.requests[1].headers["x-goog-api-key"] == "ya29.access-token-2"

    async def test_second_exhaustion_is_surfaced(self, registry, settings, two_accounts):
        upstream = Upstream(
            httpx.Response(429, json=_quota_body()),
            httpx.Response(429, json=_quota_body(retry_delay="90s")),
        )
        dispatcher, client = _dispatcher(registry, upstream, settings)
        async with client:
            with pytest.raises(QuotaExhaustedError) as exc_info:
                await dispatcher.dispatch(_gemini_request())

        assert len(upstream.requests) == 2
        assert exc_info.value.quota_key == "gemini-cli"
        assert exc_info.value.reset_in_ms == 90_000

    async def test_explicit_marker_disables_fallback(
        self, registry, settings, two_accounts
    ):
        upstream = Upstream(httpx.Response(429, json=_quota_body()))
        dispatcher, client = _dispatcher(registry, upstream, settings)
        async with client:
            with pytest.raises(QuotaExhaustedError):
                await dispatcher.dispatch(_gemini_request("antigravity-gemini-3-flash"))
        assert len(upstream.requests) == 1

    async def test_explicit_quota_only_suppresses_fallback_and_keeps_initial_style(
        self, registry, settings, two_accounts, clock
    ):
        first, _ = two_accounts
        upstream = Upstream(httpx.Response(429, json=_quota_body()))
        dispatcher, client = _dispatcher(registry, upstream, settings)
        async with client:
            with pytest.raises(QuotaExhaustedError) as exc_info:
                await dispatcher.dispatch(
                    _gemini_request(),
                    QuotaFallbackConfig(cli_first=True, explicit_quota=True),
                )

        assert len(upstream.requests) == 1
        sent = upstream.requests[0]
        assert "/models/gemini-3-flash:" in str(sent.url)
        assert "antigravity-" not in str(sent.url)
        assert sent.headers["x-goog-api-key"] == "ya29.access-token-1"
        assert exc_info.value.quota_key == "gemini-cli"
        assert registry.ledger.is_exhausted(first.index, "gemini-cli", clock.now)
        assert not registry.ledger.is_exhausted(
            first.index, "gemini-antigravity", clock.now
        )

    async def test_fallback_disabled_by_config(self, registry, settings, two_accounts):
        upstream = Upstream(httpx.Response(429, json=_quota_body()))
        dispatcher, client = _dispatcher(registry, upstream, settings)
        async with client:
            with pytest.raises(QuotaExhaustedError):
                await dispatcher.dispatch(
                    _gemini_request(), QuotaFallbackConfig(quota_fallback=False)
                )
        assert len(upstream.requests) == 1

    async def test_claude_has_no_fallback(self, registry, settings, two_accounts, clock):
        first, _ = two_accounts
        upstream = Upstream(httpx.Response(429, json=_quota_body()))
        dispatcher, client = _dispatcher(registry, upstream, settings)
        async with client:
            with pytest.raises(QuotaExhaustedError) as exc_info:
                await dispatcher.dispatch(_gemini_request("claude-sonnet-4-5"))

        assert exc_info.value.quota_key == "claude"
        assert len(upstream.requests) == 1
        assert registry.derived_status(first) == AccountStatus.RATE_LIMITED

    async def test_retry_after_header_and_default(self, registry, two_accounts, clock):
        first, second = two_accounts
        settings = RotatorSettings(default_rate_limit_ms=45_000)
        upstream = Upstream(
            httpx.Response(429, headers={"Retry-After": "12"}, text="slow down"),
            httpx.Response(429, text="quota"),
        )
        dispatcher, client = _dispatcher(registry, upstream, settings)
        async with client:
            with pytest.raises(QuotaExhaustedError):
                await dispatcher.dispatch(_gemini_request())

        assert registry.ledger.remaining(first.index, "gemini-antigravity", clock.now) == 12_000
        assert registry.ledger.remaining(first.index, "gemini-cli", clock.now) == 45_000

    async def test_exhausted_pool_is_skipped_next_call(
        self, registry, settings, two_accounts
    ):
        upstream = Upstream(
            httpx.Response(429, json=_quota_body()),
            _ok(),
            _ok(),
        )
        dispatcher, client = _dispatcher(registry, upstream, settings)
        async with client:
            await dispatcher.dispatch(_gemini_request())
            await dispatcher.dispatch(_gemini_request())

        # Account 1 is exhausted on the antigravity pool; account 2 takes it
        third = upstream.requests[2]
        assert third.headers["authorization"] == "Bearer ya29.access-token-2"


# ==========================================================================
# Other failures
# ==========================================================================


class TestFailures:
    async def test_credential_rejected_marks_expired(
        self, registry, settings, two_accounts
    ):
        first, _ = two_accounts
        body = {"error": {"code": 401, "status": "UNAUTHENTICATED", "message": "bad token"}}
        upstream = Upstream(httpx.Response(401, json=body))
        dispatcher, client = _dispatcher(registry, upstream, settings)
        async with client:
            with pytest.raises(CredentialRejectedError) as exc_info:
                await dispatcher.dispatch(_gemini_request())

        assert exc_info.value.account_index == first.index
        assert first.status == AccountStatus.EXPIRED
        assert len(upstream.requests) == 1

    async def test_verification_required(self, registry, settings, two_accounts):
        first, _ = two_accounts
        body = {
            "error": {
                "code": 403,
                "status": "PERMISSION_DENIED",
                "message": "Please verify your account",
                "details": [{"reason": "VALIDATION_REQUIRED"}],
            }
        }
        upstream = Upstream(httpx.Response(403, json=body))
        dispatcher, client = _dispatcher(registry, upstream, settings)
        async with client:
            with pytest.raises(VerificationFailedError):
                await dispatcher.dispatch(_gemini_request())
        assert first.status == AccountStatus.VERIFICATION_REQUIRED

    async def test_timeout_is_transient(self, registry, settings, two_accounts, clock):
        first, _ = two_accounts
        upstream = Upstream(httpx.ReadTimeout("timed out"))
        dispatcher, client = _dispatcher(registry, upstream, settings)
        async with client:
            with pytest.raises(TransientIOError):
                await dispatcher.dispatch(_gemini_request())

        assert first.status == AccountStatus.UNKNOWN
        assert registry.ledger.exhausted_keys(first.index, clock.now) == []

    async def test_server_error_is_transient(self, registry, settings, two_accounts, clock):
        first, _ = two_accounts
        upstream = Upstream(httpx.Response(503, text="unavailable"))
        dispatcher, client = _dispatcher(registry, upstream, settings)
        async with client:
            with pytest.raises(TransientIOError):
                await dispatcher.dispatch(_gemini_request())

        assert len(upstream.requests) == 1
        assert registry.ledger.exhausted_keys(first.index, clock.now) == []

    async def test_bad_request_returned_unchanged(self, registry, settings, two_accounts):
        first, _ = two_accounts
        body = {"error": {"code": 400, "message": "Invalid JSON payload"}}
        upstream = Upstream(httpx.Response(400, json=body))
        dispatcher, client = _dispatcher(registry, upstream, settings)
        async with client:
            response = await dispatcher.dispatch(_gemini_request())

        assert response.status_code == 400
        assert json.loads(response.content) == body
        assert first.last_used is None
