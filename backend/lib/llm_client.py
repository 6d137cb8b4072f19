"""
OpenAI client for opportunity narratives

Narratives are optional decoration on a suggestion. The engine calls the
client through a plain ``prompt -> str`` callable and treats any failure as
an empty narrative, so nothing here is allowed to block scoring or generation.

Features:
- Automatic retry with exponential backoff on rate limits and timeouts
- Request timeout
- Token usage logging
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import openai
from openai import OpenAI
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config import settings
from lib.exceptions import LLMError

logger = logging.getLogger(__name__)

SYSTEM_MESSAGE = (
    "You help professionals act on opportunities in their network. "
    "Be concrete and brief; never invent facts that are not in the prompt."
)


class OpenAIModel(str, Enum):
    """Supported OpenAI models"""
    GPT_4O_MINI = "gpt-4o-mini"
    GPT_4 = "gpt-4"
    GPT_3_5_TURBO = "gpt-3.5-turbo"


@dataclass
class LLMUsage:
    """Token usage of one completion"""
    model: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    response_time_ms: int


class NarrativeSummarizer:
    """
    Synchronous OpenAI client that turns a prompt into a short narrative

    Instances are callable, so one can be handed straight to the opportunity
    generator as its ``summarize`` hook.
    """

    def __init__(
        self,
        api_key: str,
        model: str = OpenAIModel.GPT_3_5_TURBO.value,
        timeout: float = 20,
        max_retries: int = 2,
        max_tokens: int = 120,
        client: Optional[OpenAI] = None,
    ):
        """
        Initialize the summarizer

        Args:
            api_key: OpenAI API key
            model: Chat model name
            timeout: Request timeout in seconds
            max_retries: Attempts after the first on rate limit/timeout
            max_tokens: Completion length cap
            client: Pre-built client, mainly for tests
        """
        self.client = client or OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self.model = model
        self.max_tokens = max_tokens
        self.last_usage: Optional[LLMUsage] = None
        self._request = retry(
            stop=stop_after_attempt(max_retries + 1),
            wait=wait_exponential(multiplier=1, min=1, max=5),
            retry=retry_if_exception_type((openai.RateLimitError, openai.APITimeoutError)),
            reraise=True,
        )(self._make_request)

        logger.info(f"Narrative summarizer initialized with model {model}")

    def _make_request(self, prompt: str):
        try:
            return self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_MESSAGE},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.3,
                max_tokens=self.max_tokens,
            )
        except openai.RateLimitError as e:
            logger.warning(f"Rate limit hit: {e}")
            raise
        except openai.APITimeoutError as e:
            logger.warning(f"API timeout: {e}")
            raise
        except Exception as e:
            logger.error(f"OpenAI API error: {e}")
            raise LLMError(f"API request failed: {e}", "api_error")

    def summarize(self, prompt: str) -> str:
        """
        Generate a narrative for a prompt

        Raises:
            LLMError: The request failed after retries
        """
        start_time = time.time()
        try:
            response = self._request(prompt)
        except LLMError:
            raise
        except Exception as e:
            raise LLMError(f"Narrative generation failed: {e}", type(e).__name__)

        content = (response.choices[0].message.content or "").strip()
        usage = response.usage
        if usage is not None:
            self.last_usage = LLMUsage(
                model=self.model,
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
                total_tokens=usage.total_tokens,
                response_time_ms=int((time.time() - start_time) * 1000),
            )
            logger.info(
                f"LLM narrative: model={self.model}, tokens={usage.total_tokens}, "
                f"time={self.last_usage.response_time_ms}ms"
            )
        return content

    __call__ = summarize


def build_summarizer() -> Optional[NarrativeSummarizer]:
    """Summarizer from settings, or None when no API key is configured"""
    if not settings.OPENAI_API_KEY:
        logger.info("OPENAI_API_KEY not set, opportunity narratives disabled")
        return None
    return NarrativeSummarizer(
        api_key=settings.OPENAI_API_KEY,
        model=settings.OPENAI_MODEL,
        timeout=settings.OPENAI_TIMEOUT,
        max_retries=settings.OPENAI_MAX_RETRIES,
    )
