"""
Tests for configuration loading and precedence.
"""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from agentctx.config import AgentCtxConfig, load_config
from agentctx.llm.models import TokenizerKind


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    import agentctx.config as config_mod

    for name in config_mod._ENV_MAP:
        monkeypatch.delenv(name, raising=False)


def write_yaml(path: Path, data: dict) -> Path:
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


class TestDefaults:
    def test_defaults(self):
        cfg = load_config()
        assert cfg.llm.model == "claude-sonnet-4-5-20250929"
        assert cfg.llm.max_output_tokens is None
        assert cfg.context.safety_margin_percent == 2
        assert cfg.store.backend == "sqlite"
        assert cfg.store.repair_on_load is True

    def test_missing_file_uses_defaults(self, tmp_path: Path):
        cfg = load_config(tmp_path / "nope.yaml")
        assert cfg.context.safety_margin_percent == 2

    def test_overheads(self):
        oh = AgentCtxConfig().context.overheads()
        assert (oh.per_message, oh.message_boundary, oh.tool_block) == (4, 3, 10)
        assert (oh.image, oh.per_tool, oh.chars_per_token) == (1000, 20, 4)


class TestPrecedence:
    def test_file_values(self, tmp_path: Path):
        path = write_yaml(
            tmp_path / "agentctx.yaml",
            {
                "llm": {"model": "gpt-4o", "bogus": 1},
                "context": {"safety_margin_percent": 5},
                "unknown_section": {"x": 1},
            },
        )
        cfg = load_config(path)
        assert cfg.llm.model == "gpt-4o"
        assert cfg.context.safety_margin_percent == 5

    def test_profile_overlay(self, tmp_path: Path):
        path = write_yaml(
            tmp_path / "agentctx.yaml",
            {
                "llm": {"model": "gpt-4o"},
                "profiles": {"cheap": {"llm": {"model": "gpt-4o-mini"}}},
            },
        )
        assert load_config(path, profile="cheap").llm.model == "gpt-4o-mini"
        assert load_config(path, profile="missing").llm.model == "gpt-4o"

    def test_env_beats_file(self, tmp_path: Path, monkeypatch):
        path = write_yaml(tmp_path / "agentctx.yaml", {"context": {"safety_margin_percent": 5}})
        monkeypatch.setenv("AGENTCTX_CONTEXT_SAFETY_MARGIN", "7")
        monkeypatch.setenv("AGENTCTX_STORE_REPAIR_ON_LOAD", "no")
        monkeypatch.setenv("AGENTCTX_STORE_LOCK_TIMEOUT", "0.5")
        cfg = load_config(path)
        assert cfg.context.safety_margin_percent == 7
        assert cfg.store.repair_on_load is False
        assert cfg.store.lock_timeout_seconds == 0.5

    def test_cli_beats_env(self, monkeypatch):
        monkeypatch.setenv("AGENTCTX_LLM_MODEL", "gpt-4o")
        cfg = load_config(cli_overrides={"llm.model": "o1"})
        assert cfg.llm.model == "o1"

    def test_session_override(self):
        cfg = load_config()
        cfg.set_override("store.backend", "memory")
        assert cfg.store.backend == "memory"
        assert cfg.get_override("store.backend") == "memory"
        assert cfg.get_override("llm.model") is None
        assert "_overrides" not in cfg.to_dict()


class TestModelsConfig:
    def test_extra_models_registered(self, tmp_path: Path):
        path = write_yaml(
            tmp_path / "agentctx.yaml",
            {
                "models": {
                    "extra": [
                        {
                            "name": "local-llm",
                            "max_context_tokens": 32768,
                            "default_max_output_tokens": 2048,
                            "tokenizer": "gpt_like",
                            "provider": "local",
                        }
                    ]
                }
            },
        )
        catalog = load_config(path).models.build_catalog()
        info = catalog.get("local-llm")
        assert info.max_context_tokens == 32768
        assert info.tokenizer is TokenizerKind.GPT_LIKE
        assert catalog.get("gpt-4o") is not None

    def test_bad_tokenizer_rejected(self):
        cfg = AgentCtxConfig()
        cfg.models.extra = [{"name": "x", "max_context_tokens": 1, "tokenizer": "sentencepiece"}]
        with pytest.raises(ValueError):
            cfg.models.build_catalog()

    def test_env_map_covers_scalars_only(self):
        import agentctx.config as config_mod

        assert all(t in (str, int, float, bool) for _, t in config_mod._ENV_MAP.values())
        assert "models.extra" not in {p for p, _ in config_mod._ENV_MAP.values()}
        with pytest.raises(TypeError):
            config_mod._coerce('[{"name": "x"}]', list)

    def test_extra_models_survive_env_overrides(self, tmp_path: Path, monkeypatch):
        path = write_yaml(
            tmp_path / "agentctx.yaml",
            {"models": {"extra": [{"name": "local-llm", "max_context_tokens": 8192}]}},
        )
        monkeypatch.setenv("AGENTCTX_LLM_MODEL", "local-llm")
        cfg = load_config(path)
        assert cfg.llm.model == "local-llm"
        assert cfg.models.build_catalog().get("local-llm").max_context_tokens == 8192
