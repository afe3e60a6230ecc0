"""
Unit tests for the Vertex REST client and model pricing, using a fake HTTP session.
"""

import threading

import pytest
import requests

from josh_interview.infrastructure.llm import (
    LlmProviderError, LlmRequest, VertexRestClient, estimate_cost_usd, resolve_model_pricing,
)
from josh_interview.infrastructure.llm.provider import is_transient_http_status


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def post(self, url, headers=None, json=None, timeout=None):
        self.calls.append({"url": url, "headers": headers, "json": json, "timeout": timeout})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def vertex_payload(text='{"stepId": "pace_01", "extracted": {}}', **extra):
    payload = {"candidates": [{"content": {"parts": [{"text": text}]}}]}
    payload.update(extra)
    return payload


def make_client(responses, project="demo-project"):
    session = FakeSession(responses)
    client = VertexRestClient(project=project, session=session)
    client._token = "test-token"
    return client, session


def request(timeout_ms=2000):
    return LlmRequest(system_prompt="sys", user_prompt="user", timeout_ms=timeout_ms)


class TestVertexRestClient:
    """Tests for request building and response parsing."""

    def test_success(self):
        client, session = make_client([FakeResponse(200, vertex_payload(
            usageMetadata={"promptTokenCount": 321, "candidatesTokenCount": 45},
            modelVersion="gemini-2.5-flash-lite-001",
        ))])
        response = client.generate_text(request())
        assert response.text == '{"stepId": "pace_01", "extracted": {}}'
        assert response.model == "gemini-2.5-flash-lite-001"
        assert response.provider == "vertex"
        assert (response.usage.input_tokens, response.usage.output_tokens) == (321, 45)

        call = session.calls[0]
        assert call["url"].endswith(
            "/projects/demo-project/locations/us-central1/publishers/google/models/gemini-2.5-flash-lite:generateContent")
        assert call["headers"]["Authorization"] == "Bearer test-token"
        assert call["timeout"] == 2.0
        assert call["json"]["generationConfig"]["responseMimeType"] == "application/json"
        assert call["json"]["systemInstruction"]["parts"][0]["text"] == "sys"

    def test_multi_part_text_joined(self):
        payload = {"candidates": [{"content": {"parts": [{"text": '{"a":'}, {"text": " 1}"}]}}]}
        client, _ = make_client([FakeResponse(200, payload)])
        response = client.generate_text(request())
        assert response.text == '{"a": 1}'
        assert response.usage is None
        assert response.model == "gemini-2.5-flash-lite"

    def test_missing_project_is_non_transient(self):
        client, session = make_client([], project=None)
        with pytest.raises(LlmProviderError) as exc:
            client.generate_text(request())
        assert exc.value.transient is False
        assert session.calls == []

    @pytest.mark.parametrize("status,transient", [(429, True), (503, True), (400, False), (403, False)])
    def test_http_errors(self, status, transient):
        client, _ = make_client([FakeResponse(status, text="nope")])
        with pytest.raises(LlmProviderError) as exc:
            client.generate_text(request())
        assert exc.value.status == status
        assert exc.value.transient is transient

    def test_unauthorized_drops_token(self):
        client, _ = make_client([FakeResponse(401)])
        with pytest.raises(LlmProviderError) as exc:
            client.generate_text(request())
        assert exc.value.transient is True
        assert client._token is None

    def test_network_errors(self):
        client, _ = make_client([requests.Timeout("slow"), requests.exceptions.InvalidURL("bad")])
        with pytest.raises(LlmProviderError) as exc:
            client.generate_text(request())
        assert exc.value.transient is True
        with pytest.raises(LlmProviderError) as exc:
            client.generate_text(request())
        assert exc.value.transient is False

    def test_non_json_body(self):
        client, _ = make_client([FakeResponse(200, None)])
        with pytest.raises(LlmProviderError) as exc:
            client.generate_text(request())
        assert exc.value.transient is False

    def test_cancelled_request_not_sent(self):
        client, session = make_client([FakeResponse(200, vertex_payload())])
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(LlmProviderError):
            client.generate_text(LlmRequest("sys", "user", timeout_ms=100, cancel_event=cancel))
        assert session.calls == []


class TestPricing:
    """Tests for token cost estimation."""

    def test_longest_prefix_wins(self):
        assert resolve_model_pricing("gemini-2.5-flash-lite-001") == (100, 400)
        assert resolve_model_pricing("gemini-2.5-flash") == (300, 2500)

    def test_unknown_model_uses_fallback(self):
        assert resolve_model_pricing("mystery-model") == (100, 400)

    def test_cost(self):
        assert estimate_cost_usd("gemini-2.5-flash-lite", 120, 40) == pytest.approx(2.8e-5)
        assert estimate_cost_usd("gemini-2.5-pro", 0, 0) == 0

    def test_transient_statuses(self):
        assert is_transient_http_status(408)
        assert is_transient_http_status(500)
        assert not is_transient_http_status(404)
