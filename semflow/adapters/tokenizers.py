"""Tokenizers used for prompt budgeting."""

from __future__ import annotations

from typing import Any, Protocol

import tiktoken

from semflow.config import get_settings


class Tokenizer(Protocol):
    def encode(self, text: str) -> list[Any]:
        ...

    def decode(self, tokens: list[Any]) -> str:
        ...


class TiktokenTokenizer:
    """BPE tokenizer backed by tiktoken. The encoding is loaded on first use."""

    def __init__(self, encoding_name: str | None = None) -> None:
        self.encoding_name = encoding_name or get_settings().tokenizer_encoding
        self._encoding: tiktoken.Encoding | None = None

    @property
    def encoding(self) -> tiktoken.Encoding:
        if self._encoding is None:
            self._encoding = tiktoken.get_encoding(self.encoding_name)
        return self._encoding

    def encode(self, text: str) -> list[int]:
        return self.encoding.encode(text, disallowed_special=())

    def decode(self, tokens: list[int]) -> str:
        return self.encoding.decode(tokens)


class WhitespaceTokenizer:
    """One token per whitespace-separated word. Deterministic; handy in tests."""

    def encode(self, text: str) -> list[str]:
        return text.split()

    def decode(self, tokens: list[str]) -> str:
        return " ".join(tokens)


_default_tokenizer: Tokenizer | None = None


def get_default_tokenizer() -> Tokenizer:
    global _default_tokenizer
    if _default_tokenizer is None:
        _default_tokenizer = TiktokenTokenizer()
    return _default_tokenizer
