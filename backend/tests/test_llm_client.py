"""Tests for the OpenAI narrative summarizer."""

from types import SimpleNamespace
from unittest.mock import Mock, patch

import httpx
import openai
import pytest

from lib.exceptions import LLMError
from lib.llm_client import NarrativeSummarizer, build_summarizer


def completion(content, total_tokens=42):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=30, completion_tokens=12, total_tokens=total_tokens),
    )


@pytest.fixture
def client():
    return Mock()


class TestNarrativeSummarizer:

    def test_summarize_strips_and_records_usage(self, client):
        client.chat.completions.create.return_value = completion("  Say hi to Ann.  ")
        summarizer = NarrativeSummarizer(api_key="test", model="gpt-4o-mini", client=client)

        narrative = summarizer("Reconnect with Ann")

        assert narrative == "Say hi to Ann."
        assert summarizer.last_usage.total_tokens == 42
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["messages"][-1] == {"role": "user", "content": "Reconnect with Ann"}

    def test_timeouts_are_retried(self, client):
        timeout = openai.APITimeoutError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))
        client.chat.completions.create.side_effect = [timeout, completion("Done")]
        summarizer = NarrativeSummarizer(api_key="test", max_retries=1, client=client)

        with patch("tenacity.nap.time.sleep"):
            assert summarizer.summarize("prompt") == "Done"
        assert client.chat.completions.create.call_count == 2

    def test_other_errors_become_llm_errors(self, client):
        client.chat.completions.create.side_effect = ValueError("bad payload")
        summarizer = NarrativeSummarizer(api_key="test", client=client)

        with pytest.raises(LLMError) as exc_info:
            summarizer.summarize("prompt")

        assert exc_info.value.error_type == "api_error"
        assert client.chat.completions.create.call_count == 1


class TestBuildSummarizer:

    def test_disabled_without_api_key(self):
        with patch("lib.llm_client.settings") as settings:
            settings.OPENAI_API_KEY = None

            assert build_summarizer() is None
