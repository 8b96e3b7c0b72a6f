"""
Model metadata: context windows, output reservations and tokenizer families.

The :class:`ModelCatalog` is a read-only lookup table from the point of view
of the budgeting code.  Unknown model identifiers never fail -- they resolve
to a conservative default that counts tokens heuristically.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class TokenizerKind(Enum):
    """Counting strategy for a model family."""

    CLAUDE = "claude"
    GPT_LIKE = "gpt_like"
    GEMINI = "gemini"
    HEURISTIC = "heuristic"


@dataclass
class ModelInfo:
    name: str
    max_context_tokens: int
    default_max_output_tokens: int
    tokenizer: TokenizerKind = TokenizerKind.HEURISTIC
    provider: str = "unknown"
    supports_tools: bool = True
    supports_thinking: bool = False


DEFAULT_CONTEXT_TOKENS = 128_000
DEFAULT_OUTPUT_TOKENS = 4_096


def _seed() -> list[ModelInfo]:
    C, G, GM = TokenizerKind.CLAUDE, TokenizerKind.GPT_LIKE, TokenizerKind.GEMINI
    return [
        # Anthropic
        ModelInfo("claude-opus-4-5-20251101", 200_000, 16_384, C, "anthropic", supports_thinking=True),
        ModelInfo("claude-sonnet-4-5-20250929", 200_000, 16_384, C, "anthropic", supports_thinking=True),
        ModelInfo("claude-haiku-4-5-20251001", 200_000, 8_192, C, "anthropic", supports_thinking=True),
        ModelInfo("claude-sonnet-4-20250514", 200_000, 8_192, C, "anthropic", supports_thinking=True),
        ModelInfo("claude-opus-4-20250514", 200_000, 8_192, C, "anthropic", supports_thinking=True),
        ModelInfo("claude-3-5-sonnet-20241022", 200_000, 8_192, C, "anthropic"),
        ModelInfo("claude-3-5-haiku-20241022", 200_000, 8_192, C, "anthropic"),
        ModelInfo("claude-3-opus-20240229", 200_000, 4_096, C, "anthropic"),
        ModelInfo("claude-3-haiku-20240307", 200_000, 4_096, C, "anthropic"),
        # OpenAI
        ModelInfo("gpt-5.2-2025-12-11", 256_000, 32_768, G, "openai"),
        ModelInfo("gpt-5.2-pro-2025-12-11", 256_000, 32_768, G, "openai", supports_thinking=True),
        ModelInfo("gpt-5-mini-2025-08-07", 128_000, 16_384, G, "openai"),
        ModelInfo("gpt-4o", 128_000, 16_384, G, "openai"),
        ModelInfo("gpt-4o-mini", 128_000, 16_384, G, "openai"),
        ModelInfo("gpt-4-turbo", 128_000, 4_096, G, "openai"),
        ModelInfo("o1", 200_000, 100_000, G, "openai", supports_thinking=True),
        ModelInfo("o1-mini", 128_000, 65_536, G, "openai", supports_thinking=True),
        ModelInfo("o3-mini", 200_000, 100_000, G, "openai", supports_thinking=True),
        # Google
        ModelInfo("gemini-2.5-flash", 1_000_000, 8_192, GM, "gemini"),
        ModelInfo("gemini-2.5-pro", 1_000_000, 8_192, GM, "gemini", supports_thinking=True),
        ModelInfo("gemini-2.0-flash", 1_000_000, 8_192, GM, "gemini"),
        ModelInfo("gemini-1.5-pro", 2_000_000, 8_192, GM, "gemini"),
        ModelInfo("gemini-1.5-flash", 1_000_000, 8_192, GM, "gemini"),
        # xAI
        ModelInfo("grok-4", 256_000, 32_768, G, "grok", supports_thinking=True),
        ModelInfo("grok-4-fast-reasoning", 2_000_000, 32_768, G, "grok", supports_thinking=True),
        ModelInfo("grok-4-fast-non-reasoning", 2_000_000, 32_768, G, "grok"),
        ModelInfo("grok-4-1-fast-reasoning", 2_000_000, 32_768, G, "grok", supports_thinking=True),
        ModelInfo("grok-4-1-fast-non-reasoning", 2_000_000, 32_768, G, "grok"),
        ModelInfo("grok-code-fast-1", 256_000, 32_768, G, "grok", supports_thinking=True),
        ModelInfo("grok-3", 131_072, 16_384, G, "grok"),
        ModelInfo("grok-3-mini", 131_072, 16_384, G, "grok"),
        ModelInfo("grok-2-1212", 131_072, 8_192, G, "grok"),
        ModelInfo("grok-2-vision-1212", 32_768, 8_192, G, "grok"),
        # Groq
        ModelInfo("llama-3.3-70b-versatile", 128_000, 8_192, G, "groq"),
        ModelInfo("llama-3.1-70b-versatile", 128_000, 8_192, G, "groq"),
        ModelInfo("llama-3.1-8b-instant", 128_000, 8_192, G, "groq"),
        ModelInfo("mixtral-8x7b-32768", 32_768, 4_096, G, "groq"),
        ModelInfo("gemma2-9b-it", 8_192, 4_096, G, "groq"),
    ]


class ModelCatalog:
    """
    Catalog of known models.

    Parameters
    ----------
    seed:
        Populate the catalog with the built-in model table.  Tests pass
        ``False`` and register their own models.
    """

    def __init__(self, seed: bool = True) -> None:
        self._models: dict[str, ModelInfo] = {}
        if seed:
            for info in _seed():
                self.register(info)

    def register(self, info: ModelInfo) -> None:
        """Register (or replace) a model."""
        self._models[info.name] = info

    def get(self, model: str) -> ModelInfo | None:
        """
        Look up *model*, falling back to prefix matching so that
        version-less and dated identifiers resolve to a known entry.
        """
        if not model:
            return None
        info = self._models.get(model)
        if info is not None:
            return info
        for name, info in self._models.items():
            family = "-".join(name.split("-")[:3])
            if name.startswith(model) or model.startswith(family):
                return info
        return None

    def info_for(self, model: str) -> ModelInfo:
        """Return model info, or a heuristic default for unknown models."""
        info = self.get(model)
        if info is not None:
            return info
        return ModelInfo(
            name=model,
            max_context_tokens=DEFAULT_CONTEXT_TOKENS,
            default_max_output_tokens=DEFAULT_OUTPUT_TOKENS,
            tokenizer=TokenizerKind.HEURISTIC,
            provider="unknown",
        )

    def list(self) -> list[str]:
        return list(self._models)

    def providers(self) -> list[str]:
        return sorted({m.provider for m in self._models.values()})

    def models_for_provider(self, provider: str) -> list[str]:
        return sorted(m.name for m in self._models.values() if m.provider == provider)
