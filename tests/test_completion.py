from types import SimpleNamespace
from unittest.mock import Mock

import pytest
from openai import OpenAIError

from userkb.chat.completion import OpenAICompletionProvider
from userkb.errors import ProviderUnavailable


def _chunk(content):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


class RecordingStream:
    def __init__(self, chunks):
        self._chunks = iter(chunks)
        self.closed = False

    def __iter__(self):
        return self

    def __next__(self):
        return next(self._chunks)

    def close(self):
        self.closed = True


@pytest.fixture
def client():
    return Mock()


@pytest.fixture
def provider(client):
    return OpenAICompletionProvider(client=client, stream_model="chat-model", analysis_model="json-model")


def test_stream_yields_non_empty_fragments(provider, client):
    stream = RecordingStream([_chunk("Hel"), _chunk(None), SimpleNamespace(choices=[]), _chunk("lo")])
    client.chat.completions.create.return_value = stream

    fragments = list(provider.stream_chat([{"role": "user", "content": "hi"}], temperature=0.7, max_tokens=50))

    assert fragments == ["Hel", "lo"]
    assert stream.closed is True
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "chat-model"
    assert kwargs["stream"] is True
    assert kwargs["max_tokens"] == 50


def test_closing_early_closes_provider_stream(provider, client):
    stream = RecordingStream([_chunk("a"), _chunk("b")])
    client.chat.completions.create.return_value = stream

    fragments = provider.stream_chat([{"role": "user", "content": "hi"}])
    assert next(fragments) == "a"
    fragments.close()

    assert stream.closed is True


def test_stream_start_failure_is_provider_unavailable(provider, client):
    client.chat.completions.create.side_effect = OpenAIError("rate limited")

    with pytest.raises(ProviderUnavailable, match="rate limited"):
        list(provider.stream_chat([{"role": "user", "content": "hi"}]))


def test_complete_uses_json_mode(provider, client):
    client.chat.completions.create.return_value = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content='{"shouldExecuteTool": false}'))]
    )

    text = provider.complete([{"role": "system", "content": "decide"}], json_mode=True)

    assert text == '{"shouldExecuteTool": false}'
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "json-model"
    assert kwargs["response_format"] == {"type": "json_object"}


def test_complete_failure_is_provider_unavailable(provider, client):
    client.chat.completions.create.side_effect = OpenAIError("timeout")
    with pytest.raises(ProviderUnavailable):
        provider.complete([{"role": "user", "content": "hi"}])


def test_complete_without_choices_returns_empty(provider, client):
    client.chat.completions.create.return_value = SimpleNamespace(choices=[])
    assert provider.complete([{"role": "user", "content": "hi"}]) == ""
