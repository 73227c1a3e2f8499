import os
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from hybrid_rag.utils.config import LLMConfig
from hybrid_rag.utils.llm_client import ChatLanguageModel, LanguageModel, create_openai_client


@pytest.fixture
def mock_openai():
    with patch("hybrid_rag.utils.llm_client.OpenAI") as mock:
        yield mock


def _completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def test_create_client_defaults(mock_openai):
    # Ensure no env vars interfere
    with patch.dict(os.environ, {}, clear=True):
        create_openai_client()
        mock_openai.assert_called_once()
        call_kwargs = mock_openai.call_args.kwargs
        assert call_kwargs.get("api_key") is None
        assert call_kwargs.get("base_url") is None
        assert call_kwargs.get("max_retries") == 2


def test_create_client_explicit_args(mock_openai):
    create_openai_client(
        api_key="sk-explicit",
        base_url="https://explicit.com",
        timeout=30.0,
        max_retries=5,
    )

    call_kwargs = mock_openai.call_args.kwargs
    assert call_kwargs["api_key"] == "sk-explicit"
    assert call_kwargs["base_url"] == "https://explicit.com"
    assert call_kwargs["timeout"] == 30.0
    assert call_kwargs["max_retries"] == 5


def test_create_client_args_override_env(mock_openai):
    env = {"OPENAI_API_KEY": "sk-env", "OPENAI_BASE_URL": "https://env.com"}
    with patch.dict(os.environ, env):
        create_openai_client()
        assert mock_openai.call_args.kwargs["api_key"] == "sk-env"

        create_openai_client(api_key="sk-override", base_url="https://override.com")
        call_kwargs = mock_openai.call_args.kwargs
        assert call_kwargs["api_key"] == "sk-override"
        assert call_kwargs["base_url"] == "https://override.com"


def test_chat_model_satisfies_protocol():
    assert isinstance(ChatLanguageModel(LLMConfig()), LanguageModel)


def test_generate_text_openai(mock_openai):
    client = mock_openai.return_value
    client.chat.completions.create.return_value = _completion('{"entities": []}')
    model = ChatLanguageModel(LLMConfig(model="gpt-test", api_key="sk-test"))

    text = model.generate_text([{"role": "user", "content": "hi"}])

    assert text == '{"entities": []}'
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-test"
    assert kwargs["messages"] == [{"role": "user", "content": "hi"}]
    assert mock_openai.call_args.kwargs["api_key"] == "sk-test"


def test_generate_text_retries_with_backoff(mock_openai):
    client = mock_openai.return_value
    client.chat.completions.create.side_effect = [
        ConnectionError("reset"),
        TimeoutError("slow"),
        _completion("ok"),
    ]
    sleeps = []
    model = ChatLanguageModel(LLMConfig(retry_attempts=3), sleep_fn=sleeps.append)

    assert model.generate_text([{"role": "user", "content": "hi"}]) == "ok"
    assert sleeps == [1, 2]


def test_generate_text_raises_last_error(mock_openai):
    client = mock_openai.return_value
    client.chat.completions.create.side_effect = [ConnectionError("first"), ConnectionError("second")]
    sleeps = []
    model = ChatLanguageModel(LLMConfig(retry_attempts=2), sleep_fn=sleeps.append)

    with pytest.raises(ConnectionError, match="second"):
        model.generate_text([{"role": "user", "content": "hi"}])
    assert sleeps == [1]


def test_generate_text_requires_messages():
    with pytest.raises(ValueError):
        ChatLanguageModel(LLMConfig()).generate_text([])


def test_generate_text_anthropic_splits_system_prompt():
    block = SimpleNamespace(type="text", text="answer")
    with patch("anthropic.Anthropic") as mock_anthropic:
        client = mock_anthropic.return_value
        client.messages.create.return_value = SimpleNamespace(content=[block])
        model = ChatLanguageModel(LLMConfig(provider="anthropic", model="claude-test", api_key="key"))

        text = model.generate_text(
            [{"role": "system", "content": "be terse"}, {"role": "user", "content": "hi"}]
        )

    assert text == "answer"
    kwargs = client.messages.create.call_args.kwargs
    assert kwargs["system"] == "be terse"
    assert kwargs["messages"] == [{"role": "user", "content": "hi"}]
    mock_anthropic.assert_called_once_with(api_key="key")


def test_list_content_is_joined(mock_openai):
    mock_openai.return_value.chat.completions.create.return_value = _completion(
        [{"text": "part one"}, "part two"]
    )
    model = ChatLanguageModel(LLMConfig())

    assert model.generate_text([{"role": "user", "content": "hi"}]) == "part one\npart two"


def test_mock_client_is_reused(mock_openai):
    mock_openai.return_value.chat.completions.create.return_value = _completion("x")
    model = ChatLanguageModel(LLMConfig())

    model.generate_text([{"role": "user", "content": "a"}])
    model.generate_text([{"role": "user", "content": "b"}])

    assert mock_openai.call_count == 1
    assert isinstance(model._client, MagicMock)
