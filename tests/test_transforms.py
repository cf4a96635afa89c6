"""Tests for RequestTransformer."""

import copy

import pytest

from account_rotator.client.transforms import RequestTransformer
from account_rotator.core.config import RotatorSettings
from account_rotator.core.types import HeaderStyle, InboundRequest, ModelFamily
from account_rotator.usage.registry import Account

from conftest import make_credential

LOCAL = "http://localhost/v1beta"


@pytest.fixture
def account():
    return Account(index=4, credential=make_credential(1))


@pytest.fixture
def transformer():
    return RequestTransformer()


def _request(model: str, generation_config=None, headers=None) -> InboundRequest:
    body = {"contents": [{"role": "user", "parts": [{"text": "Hello"}]}]}
    if generation_config is not None:
        body["generationConfig"] = generation_config
    return InboundRequest(
        url=f"{LOCAL}/models/{model}:streamGenerateContent",
        body=body,
        headers=headers or {},
    )


class TestModelPath:
    def test_antigravity_adds_marker(self, transformer, account):
        out = transformer.transform(
            _request("gemini-3-flash"), account, HeaderStyle.ANTIGRAVITY
        )
        assert out.url == f"{LOCAL}/models/antigravity-gemini-3-flash:streamGenerateContent"
        assert out.model_id == "antigravity-gemini-3-flash"
        assert out.streaming

    def test_marker_not_doubled(self, transformer, account):
        out = transformer.transform(
            _request("antigravity-gemini-3-flash"), account, HeaderStyle.ANTIGRAVITY
        )
        assert out.model_id == "antigravity-gemini-3-flash"

    def test_cli_strips_marker(self, transformer, account):
        out = transformer.transform(
            _request("antigravity-gemini-3-flash"), account, HeaderStyle.GEMINI_CLI
        )
        assert out.url == f"{LOCAL}/models/gemini-3-flash:streamGenerateContent"

    def test_endpoint_override(self, account):
        settings = RotatorSettings(gemini_cli_endpoint="https://cli.example.com/v1beta/")
        out = RequestTransformer(settings).transform(
            _request("gemini-3-pro"), account, HeaderStyle.GEMINI_CLI
        )
        assert out.url == "https://cli.example.com/v1beta/models/gemini-3-pro:streamGenerateContent"

    def test_url_without_model_is_kept(self, transformer, account):
        request = InboundRequest(url=f"{LOCAL}/countTokens")
        out = transformer.transform(request, account, HeaderStyle.ANTIGRAVITY)
        assert out.url == request.url
        assert out.model_id is None


class TestHeaders:
    def test_antigravity_bearer_auth(self, transformer, account):
        out = transformer.transform(
            _request("gemini-3-flash", headers={"x-api-key": "caller-key"}),
            account,
            HeaderStyle.ANTIGRAVITY,
        )
        assert out.headers["Authorization"] == "Bearer ya29.access-token-1"
        assert "x-api-key" not in out.headers
        assert out.headers["User-Agent"].startswith("antigravity/")
        assert out.account_index == 4

    def test_cli_api_key_header(self, transformer, account):
        out = transformer.transform(
            _request("gemini-3-flash", headers={"Authorization": "Bearer caller"}),
            account,
            HeaderStyle.GEMINI_CLI,
        )
        assert out.headers["x-goog-api-key"] == "ya29.access-token-1"
        assert "Authorization" not in out.headers
        assert out.headers["User-Agent"].startswith("google-api-nodejs-client/")

    def test_unrelated_headers_pass_through(self, transformer, account):
        out = transformer.transform(
            _request("gemini-3-flash", headers={"X-Request-Id": "abc"}),
            account,
            HeaderStyle.ANTIGRAVITY,
        )
        assert out.headers["X-Request-Id"] == "abc"
        assert out.headers["Content-Type"] == "application/json"


class TestBodyCeilings:
    def test_claude_payload_within_limits_is_unchanged(self, transformer, account):
        config = {
            "temperature": 0.5,
            "thinkingConfig": {"thinkingBudget": 1024},
            "maxOutputTokens": 64000,
        }
        request = _request("antigravity-claude-sonnet-4-6-thinking", config)
        out = transformer.transform(request, account, HeaderStyle.ANTIGRAVITY)
        assert out.body == request.body

    def test_claude_output_tokens_clamped(self, transformer, account):
        request = _request("claude-sonnet-4-5", {"maxOutputTokens": 100000})
        out = transformer.transform(request, account, HeaderStyle.ANTIGRAVITY)
        assert out.body["generationConfig"]["maxOutputTokens"] == 64000

    @pytest.mark.parametrize(
        "style,ceiling",
        [(HeaderStyle.ANTIGRAVITY, 65535), (HeaderStyle.GEMINI_CLI, 65536)],
    )
    def test_gemini_output_ceiling_per_dialect(self, transformer, account, style, ceiling):
        request = _request("gemini-3-pro", {"maxOutputTokens": 1_000_000})
        out = transformer.transform(request, account, style)
        assert out.body["generationConfig"]["maxOutputTokens"] == ceiling

    def test_gemini_thinking_budget_clamped(self, transformer, account):
        request = _request(
            "gemini-3-pro", {"thinkingConfig": {"thinkingBudget": 50000}}
        )
        out = transformer.transform(request, account, HeaderStyle.GEMINI_CLI)
        assert out.body["generationConfig"]["thinkingConfig"]["thinkingBudget"] == 32768

    def test_claude_budget_kept_below_output_tokens(self, transformer, account):
        request = _request(
            "claude-opus-4",
            {"maxOutputTokens": 8000, "thinkingConfig": {"thinkingBudget": 16000}},
        )
        out = transformer.transform(request, account, HeaderStyle.ANTIGRAVITY)
        assert out.body["generationConfig"]["thinkingConfig"]["thinkingBudget"] == 7999

    def test_family_hint_overrides_model_id(self, transformer, account):
        request = _request("custom-model", {"maxOutputTokens": 65000})
        out = transformer.transform(
            request, account, HeaderStyle.ANTIGRAVITY, family_hint=ModelFamily.CLAUDE
        )
        assert out.body["generationConfig"]["maxOutputTokens"] == 64000

    def test_input_is_not_mutated(self, transformer, account):
        request = _request(
            "gemini-3-pro",
            {"maxOutputTokens": 999999, "thinkingConfig": {"thinkingBudget": 99999}},
            headers={"Authorization": "Bearer caller"},
        )
        before = copy.deepcopy(request)
        transformer.transform(request, account, HeaderStyle.ANTIGRAVITY)
        assert request == before

    def test_other_fields_pass_through(self, transformer, account):
        request = _request("gemini-3-pro", {"temperature": 0.2, "topP": 0.9})
        request.body["tools"] = [{"functionDeclarations": []}]
        out = transformer.transform(request, account, HeaderStyle.GEMINI_CLI)
        assert out.body == request.body
