"""Prompt-injection screen backed by a one-token classifier model.

The guard fails open: an unconfigured classifier, a transport error or an
unparseable score all yield ``GuardResult(is_safe=True, score=0.0)``, so the
chat and digest paths never depend on the classifier being reachable.
"""

import logging
import math
from dataclasses import dataclass

from woolet_ai.providers.base import ChatProvider
from woolet_ai.providers.registry import summarize_error

logger = logging.getLogger("woolet.prompt_guard")

DEFAULT_GUARD_MODEL = "meta-llama/llama-prompt-guard-2-86m"
DEFAULT_THRESHOLD = 0.93


@dataclass(frozen=True)
class GuardResult:
    is_safe: bool
    score: float


SAFE = GuardResult(is_safe=True, score=0.0)


class PromptGuard:
    def __init__(
        self,
        client: ChatProvider | None,
        model: str = DEFAULT_GUARD_MODEL,
        threshold: float = DEFAULT_THRESHOLD,
    ) -> None:
        self._client = client
        self._model = model
        self._threshold = threshold

    async def check(self, text: str) -> GuardResult:
        if self._client is None:
            return SAFE

        logger.info(
            "prompt_guard_start",
            extra={"provider": "groq", "model": self._model, "content_length": len(text)},
        )
        try:
            response = await self._client.chat(
                {
                    "model": self._model,
                    "messages": [{"role": "user", "content": text}],
                    "temperature": 1,
                    "top_p": 1,
                    "max_completion_tokens": 1,
                    "stream": False,
                }
            )
            raw = response["choices"][0]["message"].get("content") or "0"
            score = float(str(raw).strip())
            if math.isnan(score):
                raise ValueError(f"unparseable guard score: {raw!r}")
        except Exception as exc:
            logger.error("prompt_guard_failed", extra={"error": summarize_error(exc)})
            return SAFE

        result = GuardResult(is_safe=score <= self._threshold, score=score)
        logger.info(
            "prompt_guard_result",
            extra={"score": result.score, "is_safe": result.is_safe},
        )
        return result
