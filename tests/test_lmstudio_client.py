import json
import os
import sys

import pytest
import requests

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from services.lmstudio_client import LMStudioClient, LMStudioClientError


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=None):
        self.status_code = status_code
        if text is None:
            text = json.dumps(body) if body is not None else ""
        self.text = text
        self.content = text.encode("utf-8")

    def json(self):
        return json.loads(self.text)

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response


def _completion(content, finish_reason="stop"):
    return {
        "model": "gpt-oss-20b",
        "choices": [
            {"message": {"role": "assistant", "content": content}, "finish_reason": finish_reason}
        ],
        "usage": {"prompt_tokens": 12, "completion_tokens": 5},
    }


def test_complete_posts_json_mode_payload():
    session = FakeSession(FakeResponse(body=_completion('{"records": []}')))
    client = LMStudioClient(base_url="localhost:1234/", timeout=5, api_key="secret", session=session)

    completion = client.complete(
        model="gpt-oss",
        messages=[{"role": "user", "content": "hi"}],
        options={"temperature": 0.2, "max_tokens": 64, "num_ctx": 4096},
    )

    assert completion.content == '{"records": []}'
    assert completion.model == "gpt-oss-20b"
    assert completion.usage["completion_tokens"] == 5
    assert not completion.truncated
    method, url, kwargs = session.calls[0]
    assert method == "POST"
    assert url == "http://localhost:1234/v1/chat/completions"
    assert kwargs["timeout"] == 5
    assert kwargs["headers"]["Authorization"] == "Bearer secret"
    payload = kwargs["json"]
    assert payload["temperature"] == 0.2
    assert payload["max_tokens"] == 64
    assert "num_ctx" not in payload
    assert payload["stream"] is False
    assert payload["response_format"] == {"type": "json_object"}


def test_json_mode_can_be_disabled():
    session = FakeSession(FakeResponse(body=_completion("plain")))
    client = LMStudioClient(base_url="http://lm", session=session, api_key="")

    client.complete(model="m", messages=[], json_mode=False)

    kwargs = session.calls[0][2]
    assert "response_format" not in kwargs["json"]
    assert "Authorization" not in kwargs["headers"]


def test_length_finish_reason_marks_truncation():
    session = FakeSession(FakeResponse(body=_completion('{"records": [', finish_reason="length")))
    client = LMStudioClient(base_url="http://lm", session=session)

    assert client.complete(model="m", messages=[]).truncated


def test_legacy_text_layout_is_understood():
    session = FakeSession(FakeResponse(body={"text": "legacy"}))
    client = LMStudioClient(base_url="http://lm", session=session)

    completion = client.complete(model="fallback-model", messages=[])

    assert completion.content == "legacy"
    assert completion.model == "fallback-model"
    assert completion.finish_reason is None


def test_http_errors_carry_status_code():
    session = FakeSession(FakeResponse(status_code=503, text="model not loaded"))
    client = LMStudioClient(base_url="http://lm", session=session)

    with pytest.raises(LMStudioClientError) as excinfo:
        client.complete(model="m", messages=[])

    assert excinfo.value.status_code == 503
    assert "model not loaded" in str(excinfo.value)


def test_connection_errors_are_wrapped():
    session = FakeSession(error=requests.ConnectionError("refused"))
    client = LMStudioClient(base_url="http://lm", session=session)

    with pytest.raises(LMStudioClientError) as excinfo:
        client.complete(model="m", messages=[])

    assert excinfo.value.status_code is None
    assert "http://lm" in str(excinfo.value)


@pytest.mark.parametrize("text", ["<html>oops</html>", "[1, 2]"])
def test_unusable_bodies_are_errors(text):
    session = FakeSession(FakeResponse(text=text))
    client = LMStudioClient(base_url="http://lm", session=session)

    with pytest.raises(LMStudioClientError):
        client.complete(model="m", messages=[])
