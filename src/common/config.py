# ABOUTME: Loads tracker settings from YAML with environment-variable overrides.
# ABOUTME: Also owns the single logging setup used by the CLI.

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG_PATH = Path("configs/tracker.yaml")
LLM_PROVIDERS = ("openai", "anthropic")
DEFAULT_MODELS = {"openai": "gpt-4o-mini", "anthropic": "claude-3-haiku-20240307"}


@dataclass(frozen=True)
class LLMConfig:
    enabled: bool = False
    provider: str = "openai"
    model: Optional[str] = None
    temperature_hl: float = 0.3
    temperature_sl: float = 0.1
    max_tokens: int = 300

    @property
    def resolved_model(self) -> str:
        return self.model or DEFAULT_MODELS.get(self.provider, DEFAULT_MODELS["openai"])


@dataclass(frozen=True)
class TrackerConfig:
    data_dir: Path = Path("data/gradebook")
    log_level: str = "WARNING"
    llm: LLMConfig = field(default_factory=LLMConfig)


def _env_flag(name: str) -> Optional[bool]:
    value = os.environ.get(name)
    if value is None:
        return None
    return value.strip().lower() == "true"


def load_config(path: Optional[Path] = None) -> TrackerConfig:
    """
    Read the tracker YAML config.

    A missing file yields defaults. Environment variables USE_LLM_PREDICTIONS,
    LLM_PROVIDER, LLM_MODEL and GRADE_TRACKER_DATA_DIR win over the file.
    """

    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    cfg = {}
    if config_path.exists():
        with open(config_path) as f:
            cfg = yaml.safe_load(f) or {}

    data_cfg = cfg.get("data", {}) or {}
    llm_cfg = cfg.get("llm", {}) or {}
    logging_cfg = cfg.get("logging", {}) or {}

    llm = LLMConfig(
        enabled=bool(llm_cfg.get("enabled", False)),
        provider=str(llm_cfg.get("provider", "openai")).lower(),
        model=llm_cfg.get("model"),
        temperature_hl=float(llm_cfg.get("temperature_hl", 0.3)),
        temperature_sl=float(llm_cfg.get("temperature_sl", 0.1)),
        max_tokens=int(llm_cfg.get("max_tokens", 300)),
    )

    enabled = _env_flag("USE_LLM_PREDICTIONS")
    if enabled is not None:
        llm = replace(llm, enabled=enabled)
    if os.environ.get("LLM_PROVIDER"):
        llm = replace(llm, provider=os.environ["LLM_PROVIDER"].strip().lower())
    if os.environ.get("LLM_MODEL"):
        llm = replace(llm, model=os.environ["LLM_MODEL"].strip())

    if llm.provider not in LLM_PROVIDERS:
        raise ValueError(f"Unsupported LLM provider '{llm.provider}'. Expected one of: {', '.join(LLM_PROVIDERS)}.")

    data_dir = os.environ.get("GRADE_TRACKER_DATA_DIR") or data_cfg.get("data_dir", "data/gradebook")

    return TrackerConfig(
        data_dir=Path(data_dir),
        log_level=str(logging_cfg.get("level", "WARNING")).upper(),
        llm=llm,
    )


def configure_logging(level: str = "WARNING") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
