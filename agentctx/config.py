"""
Typed configuration model with precedence-based loader.

Precedence (lowest to highest):
    defaults < config file (YAML) < env vars < CLI flags < per-session overrides
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any

import yaml

from agentctx.llm.models import ModelCatalog, ModelInfo, TokenizerKind
from agentctx.llm.token_counter import TokenOverheads


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class LLMConfig:
    model: str = "claude-sonnet-4-5-20250929"
    max_output_tokens: int | None = None


@dataclass
class ContextConfig:
    safety_margin_percent: int = 2
    encoding: str = "cl100k_base"
    per_message_overhead: int = 4
    message_boundary_overhead: int = 3
    tool_block_overhead: int = 10
    image_tokens: int = 1000
    per_tool_overhead: int = 20
    chars_per_token: int = 4

    def overheads(self) -> TokenOverheads:
        return TokenOverheads(
            per_message=self.per_message_overhead,
            message_boundary=self.message_boundary_overhead,
            tool_block=self.tool_block_overhead,
            image=self.image_tokens,
            per_tool=self.per_tool_overhead,
            chars_per_token=self.chars_per_token,
        )


@dataclass
class StoreConfig:
    backend: str = "sqlite"  # "sqlite" or "memory"
    db_path: str = "~/.agentctx/threads.db"
    lock_timeout_seconds: float = 5.0
    repair_on_load: bool = True


@dataclass
class ModelsConfig:
    # Each entry: name, max_context_tokens, default_max_output_tokens,
    # optional tokenizer (claude|gpt_like|gemini|heuristic) and provider.
    extra: list[dict[str, Any]] = field(default_factory=list)

    def build_catalog(self) -> ModelCatalog:
        catalog = ModelCatalog()
        for entry in self.extra:
            catalog.register(
                ModelInfo(
                    name=entry["name"],
                    max_context_tokens=int(entry["max_context_tokens"]),
                    default_max_output_tokens=int(entry.get("default_max_output_tokens", 4096)),
                    tokenizer=TokenizerKind(entry.get("tokenizer", "heuristic")),
                    provider=entry.get("provider", "custom"),
                    supports_thinking=bool(entry.get("supports_thinking", False)),
                )
            )
        return catalog


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class AgentCtxConfig:
    llm: LLMConfig = field(default_factory=LLMConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    models: ModelsConfig = field(default_factory=ModelsConfig)
    profiles: dict[str, dict[str, Any]] = field(default_factory=dict)

    # ----- per-session overrides (applied last) ----
    _overrides: dict[str, Any] = field(default_factory=dict, repr=False)

    def set_override(self, dotpath: str, value: Any) -> None:
        """Set a per-session override using dot notation (e.g. 'llm.model')."""
        self._overrides[dotpath] = value
        _apply_dotpath(self, dotpath, value)

    def get_override(self, dotpath: str) -> Any | None:
        return self._overrides.get(dotpath)

    def to_dict(self) -> dict:
        d = asdict(self)
        d.pop("_overrides", None)
        return d


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _apply_dotpath(obj: Any, dotpath: str, value: Any) -> None:
    """Walk obj via dotpath and set the final attribute."""
    parts = dotpath.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    setattr(obj, parts[-1], value)


def _deep_merge(base: dict, overlay: dict) -> dict:
    """Recursively merge overlay into base, returning a new dict."""
    merged = dict(base)
    for k, v in overlay.items():
        if k in merged and isinstance(merged[k], dict) and isinstance(v, dict):
            merged[k] = _deep_merge(merged[k], v)
        else:
            merged[k] = v
    return merged


def _coerce(value: str, target_type: type) -> Any:
    """Coerce a string env value to the target type."""
    if target_type is bool:
        return value.lower() in ("1", "true", "yes", "on")
    if target_type is int:
        return int(value)
    if target_type is float:
        return float(value)
    if target_type is not str:
        raise TypeError(f"Cannot set a {target_type.__name__} setting from the environment")
    return value


def _build_section(cls: type, raw: dict) -> Any:
    """Build a dataclass section from a raw dict, ignoring unknown keys."""
    valid_fields = {f.name for f in fields(cls)}
    filtered = {k: v for k, v in raw.items() if k in valid_fields}
    return cls(**filtered)


# ---------------------------------------------------------------------------
# ENV var mapping
# ---------------------------------------------------------------------------

# Scalar settings only.  ``models.extra`` is read from the config file.
_ENV_MAP: dict[str, tuple[str, type]] = {
    "AGENTCTX_LLM_MODEL":             ("llm.model", str),
    "AGENTCTX_LLM_MAX_OUTPUT":        ("llm.max_output_tokens", int),
    "AGENTCTX_CONTEXT_SAFETY_MARGIN": ("context.safety_margin_percent", int),
    "AGENTCTX_CONTEXT_ENCODING":      ("context.encoding", str),
    "AGENTCTX_STORE_BACKEND":         ("store.backend", str),
    "AGENTCTX_STORE_DB_PATH":         ("store.db_path", str),
    "AGENTCTX_STORE_LOCK_TIMEOUT":    ("store.lock_timeout_seconds", float),
    "AGENTCTX_STORE_REPAIR_ON_LOAD":  ("store.repair_on_load", bool),
}


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> AgentCtxConfig:
    """
    Build an AgentCtxConfig by layering sources in precedence order:

        defaults  <  config file  <  env vars  <  CLI flags  <  per-session overrides

    Parameters
    ----------
    config_path : path to YAML config file (optional)
    profile : name of a profile to apply from the config file
    cli_overrides : dict of dotpath -> value CLI flag overrides
    """
    raw: dict[str, Any] = {}

    # --- 1. Config file ---
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.is_file():
            with p.open("r", encoding="utf-8") as f:
                file_data = yaml.safe_load(f) or {}
            raw = _deep_merge(raw, file_data)

    # --- 2. Profile overlay ---
    if profile and "profiles" in raw:
        profile_data = raw.get("profiles", {}).get(profile, {})
        if profile_data:
            raw = _deep_merge(raw, profile_data)

    # --- Build sections from raw ---
    cfg = AgentCtxConfig(
        llm=_build_section(LLMConfig, raw.get("llm", {})),
        context=_build_section(ContextConfig, raw.get("context", {})),
        store=_build_section(StoreConfig, raw.get("store", {})),
        models=_build_section(ModelsConfig, raw.get("models", {})),
        profiles=raw.get("profiles", {}),
    )

    # --- 3. Env var overrides ---
    for env_var, (dotpath, target_type) in _ENV_MAP.items():
        val = os.environ.get(env_var)
        if val is not None:
            _apply_dotpath(cfg, dotpath, _coerce(val, target_type))

    # --- 4. CLI flag overrides ---
    if cli_overrides:
        for dotpath, value in cli_overrides.items():
            _apply_dotpath(cfg, dotpath, value)

    return cfg
