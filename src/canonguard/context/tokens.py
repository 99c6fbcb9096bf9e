"""Token counting for budget enforcement.

Models tiktoken knows are counted exactly. Everything else (including
Anthropic and Gemini models) uses a character-ratio heuristic of
``chars_per_token`` characters per token, 3.75 by default, which sits in the
3.5-4 chars/token range observed for English prose. The heuristic rounds up
so estimates err toward overcounting.
"""

from __future__ import annotations

import logging
import math

import tiktoken

logger = logging.getLogger("canonguard.tokens")

DEFAULT_CHARS_PER_TOKEN = 3.75


class TokenCounter:
    """Counts tokens for (text, model) pairs."""

    def __init__(self, chars_per_token: float = DEFAULT_CHARS_PER_TOKEN) -> None:
        self.chars_per_token = chars_per_token
        self._encodings: dict[str, tiktoken.Encoding | None] = {}

    def _encoding_for(self, model_name: str | None) -> tiktoken.Encoding | None:
        if not model_name:
            return None
        if model_name not in self._encodings:
            try:
                self._encodings[model_name] = tiktoken.encoding_for_model(model_name)
            except KeyError:
                self._encodings[model_name] = None
            except (OSError, ValueError) as e:
                # Encoding files are fetched on first use; treat as unavailable
                logger.warning("tokenizer unavailable for %s, using heuristic: %s", model_name, e)
                self._encodings[model_name] = None
        return self._encodings[model_name]

    def is_exact(self, model_name: str | None) -> bool:
        return self._encoding_for(model_name) is not None

    def estimate(self, text: str) -> int:
        """Heuristic token count."""
        if not text:
            return 0
        return max(1, math.ceil(len(text) / self.chars_per_token))

    def count(self, text: str, model_name: str | None = None) -> int:
        encoding = self._encoding_for(model_name)
        if encoding is None:
            return self.estimate(text)
        return len(encoding.encode(text, disallowed_special=()))
