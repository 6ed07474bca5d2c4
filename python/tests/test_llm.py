"""Completion client tests against a respx-mocked chat endpoint.

No live provider calls and no real keys.
"""

import json

import httpx
import pytest
import respx

from quizmint.config import Settings
from quizmint.services.llm import (
    CompletionClient,
    CompletionError,
    CompletionFailure,
    OpenAIChatProvider,
    classify_status,
    classify_transport,
    create_completion_client,
)
from quizmint.services.llm.providers import OPENAI_CHAT_URL

CHAT_BODY = {
    "id": "chatcmpl-123",
    "model": "gpt-3.5-turbo-0613",
    "choices": [
        {
            "index": 0,
            "message": {"role": "assistant", "content": '{"d": []}'},
            "finish_reason": "stop",
        }
    ],
    "usage": {"prompt_tokens": 120, "completion_tokens": 30, "total_tokens": 150},
}


@pytest.fixture
def client() -> CompletionClient:
    return CompletionClient(
        OpenAIChatProvider(httpx.AsyncClient()),
        api_key="test-key",
        model_name="gpt-3.5-turbo",
    )


class TestComplete:
    @pytest.mark.asyncio
    @respx.mock
    async def test_single_user_message_at_zero_temperature(self, client):
        route = respx.post(OPENAI_CHAT_URL).mock(
            return_value=httpx.Response(200, json=CHAT_BODY, headers={"x-request-id": "req_1"})
        )

        completion = await client.complete("Write questions")

        assert completion.text == '{"d": []}'
        assert completion.model == "gpt-3.5-turbo-0613"
        assert completion.prompt_tokens == 120
        assert completion.completion_tokens == 30
        assert completion.request_id == "req_1"
        assert not completion.truncated

        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer test-key"
        sent = json.loads(request.content)
        assert sent["messages"] == [{"role": "user", "content": "Write questions"}]
        assert sent["temperature"] == 0.0
        assert sent["stream"] is False
        assert "max_tokens" not in sent

    @pytest.mark.asyncio
    @respx.mock
    async def test_request_id_falls_back_to_body_id(self, client):
        respx.post(OPENAI_CHAT_URL).mock(return_value=httpx.Response(200, json=CHAT_BODY))
        completion = await client.complete("prompt")
        assert completion.request_id == "chatcmpl-123"

    @pytest.mark.asyncio
    @respx.mock
    async def test_length_finish_marks_truncated(self, client):
        body = {**CHAT_BODY, "choices": [{**CHAT_BODY["choices"][0], "finish_reason": "length"}]}
        respx.post(OPENAI_CHAT_URL).mock(return_value=httpx.Response(200, json=body))
        completion = await client.complete("prompt")
        assert completion.truncated


class TestFailures:
    @pytest.mark.asyncio
    @respx.mock
    @pytest.mark.parametrize(
        "status,expected",
        [
            (503, CompletionFailure.OVERLOADED),
            (401, CompletionFailure.INVALID_KEY),
            (429, CompletionFailure.RATE_LIMIT),
            (404, CompletionFailure.MODEL_NOT_AVAILABLE),
            (502, CompletionFailure.PROVIDER_DOWN),
        ],
    )
    async def test_http_status_is_classified(self, client, status, expected):
        respx.post(OPENAI_CHAT_URL).mock(
            return_value=httpx.Response(status, json={"error": {"message": "x"}})
        )

        with pytest.raises(CompletionError) as exc_info:
            await client.complete("prompt")

        assert exc_info.value.failure == expected
        assert exc_info.value.is_retriable == (status == 503)
        assert exc_info.value.provider == "openai"

    @pytest.mark.asyncio
    @respx.mock
    async def test_timeout_is_not_retriable(self, client):
        respx.post(OPENAI_CHAT_URL).mock(side_effect=httpx.ReadTimeout("slow"))
        with pytest.raises(CompletionError) as exc_info:
            await client.complete("prompt")
        assert exc_info.value.failure == CompletionFailure.TIMEOUT
        assert not exc_info.value.is_retriable

    @pytest.mark.asyncio
    @respx.mock
    async def test_connection_refused(self, client):
        respx.post(OPENAI_CHAT_URL).mock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(CompletionError) as exc_info:
            await client.complete("prompt")
        assert exc_info.value.failure == CompletionFailure.PROVIDER_DOWN

    @pytest.mark.asyncio
    @respx.mock
    async def test_body_without_choices(self, client):
        respx.post(OPENAI_CHAT_URL).mock(return_value=httpx.Response(200, json={"id": "x"}))
        with pytest.raises(CompletionError) as exc_info:
            await client.complete("prompt")
        assert exc_info.value.failure == CompletionFailure.BAD_RESPONSE

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_json_body(self, client):
        respx.post(OPENAI_CHAT_URL).mock(return_value=httpx.Response(200, text="<html>"))
        with pytest.raises(CompletionError) as exc_info:
            await client.complete("prompt")
        assert exc_info.value.failure == CompletionFailure.BAD_RESPONSE


class TestClassification:
    def test_context_length_code(self):
        body = {"error": {"code": "context_length_exceeded", "message": "too long"}}
        assert classify_status(400, body) == CompletionFailure.CONTEXT_TOO_LARGE

    def test_context_length_message(self):
        body = {"error": {"message": "This model's maximum context length is 4097 tokens"}}
        assert classify_status(400, body) == CompletionFailure.CONTEXT_TOO_LARGE

    def test_other_bad_request(self):
        bad_request = {"error": {"message": "bad"}}
        assert classify_status(400, bad_request) == CompletionFailure.PROVIDER_DOWN
        assert classify_status(400) == CompletionFailure.PROVIDER_DOWN

    def test_transport(self):
        assert classify_transport(httpx.ConnectTimeout("t")) == CompletionFailure.TIMEOUT
        assert classify_transport(httpx.RemoteProtocolError("x")) == CompletionFailure.PROVIDER_DOWN


def test_create_completion_client_uses_settings():
    settings = Settings(
        DATABASE_URL="sqlite+pysqlite://",
        QUIZMINT_ENV="test",
        OPENAI_API_KEY="sk-test",
        OPENAI_MODEL="gpt-4o-mini",
    )
    client = create_completion_client(settings, httpx.AsyncClient())
    assert client.model_name == "gpt-4o-mini"
