from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import httpx
import pytest
from openai import APIConnectionError

from image2taxonomy.exception import InferenceError
from image2taxonomy.llm.openai_client import OpenAIClient

ENVELOPE = '{"title":"Red Shirt","description":"A red cotton shirt","taxonomy":"Apparel & Accessories > Clothing"}'


def make_response(content=ENVELOPE, finish_reason="stop", choices=True):
    usage = SimpleNamespace(prompt_tokens=900, completion_tokens=40, total_tokens=940)
    message = SimpleNamespace(role="assistant", content=content)
    return SimpleNamespace(
        model="qwen3vl",
        choices=[SimpleNamespace(index=0, message=message, finish_reason=finish_reason)] if choices else [],
        usage=usage,
    )


@pytest.fixture
def sdk():
    return MagicMock()


@pytest.fixture
def client(sdk):
    return OpenAIClient(base_url="http://127.0.0.1:8080/", client=sdk)


def test_client_points_sdk_at_local_server():
    with patch("image2taxonomy.llm.openai_client.OpenAI") as MockOpenAI:
        OpenAIClient(base_url="http://127.0.0.1:8080", timeout=30.0)
    MockOpenAI.assert_called_once_with(
        api_key="sk-no-key-required",
        base_url="http://127.0.0.1:8080/v1",
        timeout=30.0,
        max_retries=0,
    )


def test_chat_with_image_request_shape(client, sdk):
    sdk.chat.completions.create.return_value = make_response()

    client.chat_with_image("system", "user", "data:image/jpeg;base64,AAAA", grammar="root ::= \"x\"")

    kwargs = sdk.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "qwen3vl"
    assert kwargs["max_tokens"] == 768
    assert kwargs["temperature"] == 0.05
    assert kwargs["extra_body"] == {"grammar": 'root ::= "x"'}

    system, user = kwargs["messages"]
    assert system == {"role": "system", "content": "system"}
    assert user["role"] == "user"
    assert user["content"][0] == {"type": "text", "text": "user"}
    assert user["content"][1] == {"type": "image_url", "image_url": {"url": "data:image/jpeg;base64,AAAA"}}


def test_chat_without_grammar_sends_no_extra_body(client, sdk):
    sdk.chat.completions.create.return_value = make_response()
    client.chat_with_image("system", "user", "data:image/png;base64,AAAA")
    assert sdk.chat.completions.create.call_args.kwargs["extra_body"] is None


def test_chat_returns_first_choice(client, sdk):
    sdk.chat.completions.create.return_value = make_response()

    response = client.chat_with_image("system", "user", "data:image/jpeg;base64,AAAA")

    assert response.content == ENVELOPE
    assert response.model_name == "qwen3vl"
    assert response.finish_reason == "stop"
    assert response.prompt_tokens == 900
    assert response.total_tokens == 940
    assert response.provider == "llama-server"
    assert not response.truncated


def test_truncated_generation_is_still_returned(client, sdk):
    sdk.chat.completions.create.return_value = make_response(content='{"title":"Red', finish_reason="length")

    response = client.chat_with_image("system", "user", "data:image/jpeg;base64,AAAA")

    assert response.truncated
    assert response.content == '{"title":"Red'


def test_no_choices(client, sdk):
    sdk.chat.completions.create.return_value = make_response(choices=False)
    with pytest.raises(InferenceError) as exc:
        client.chat_with_image("system", "user", "data:image/jpeg;base64,AAAA")
    assert "no choices in response" in str(exc.value)


@pytest.mark.parametrize("content", ["", None])
def test_empty_content(client, sdk, content):
    sdk.chat.completions.create.return_value = make_response(content=content)
    with pytest.raises(InferenceError) as exc:
        client.chat_with_image("system", "user", "data:image/jpeg;base64,AAAA")
    assert "empty content in response" in str(exc.value)


def test_transport_failure(client, sdk):
    request = httpx.Request("POST", "http://127.0.0.1:8080/v1/chat/completions")
    sdk.chat.completions.create.side_effect = APIConnectionError(request=request)

    with pytest.raises(InferenceError) as exc:
        client.chat_with_image("system", "user", "data:image/jpeg;base64,AAAA")
    assert "request failed" in str(exc.value)
    assert sdk.chat.completions.create.call_count == 1


def test_malformed_envelope(client, sdk):
    sdk.chat.completions.create.side_effect = ValueError("Expecting value: line 1 column 1")
    with pytest.raises(InferenceError) as exc:
        client.chat_with_image("system", "user", "data:image/jpeg;base64,AAAA")
    assert "failed to parse chat response" in str(exc.value)
