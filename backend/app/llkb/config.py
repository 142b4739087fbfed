"""LLKB Configuration

Loading order (later overrides earlier):
1. DEFAULT_CONFIG
2. {llkb_root}/config.yml
3. Environment (LLKB_ROOT, LLKB_ENABLED, LLKB_LOG_LEVEL), with a .env file
   in the working directory loaded first when present

config.yml schema:
    version: str
    enabled: bool
    extraction: {minOccurrences, predictiveExtraction, confidenceThreshold,
                 maxPredictivePerJourney, maxPredictivePerDay,
                 minLinesForExtraction, similarityThreshold}
    retention: {maxLessonAge, minSuccessRate, archiveUnused}
    history: {retentionDays}
    injection: {prioritizeByConfidence}
    scopes: {universal, frameworkSpecific, appSpecific}
    overrides: {allowUserOverride, logOverrides, flagAfterOverrides}
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import Field, ValidationError

from .errors import ConfigurationError
from .models import LLKBModel

logger = logging.getLogger(__name__)

DEFAULT_LLKB_ROOT = ".artk/llkb"
CONFIG_FILENAME = "config.yml"

DEFAULT_CONFIG: Dict[str, Any] = {
    "version": "1.0.0",
    "enabled": True,
    "extraction": {
        "minOccurrences": 2,
        "predictiveExtraction": True,
        "confidenceThreshold": 0.7,
        "maxPredictivePerJourney": 2,
        "maxPredictivePerDay": 5,
        "minLinesForExtraction": 3,
        "similarityThreshold": 0.8,
    },
    "retention": {
        "maxLessonAge": 90,
        "minSuccessRate": 0.6,
        "archiveUnused": 30,
    },
    "history": {
        "retentionDays": 365,
    },
    "injection": {
        "prioritizeByConfidence": True,
    },
    "scopes": {
        "universal": True,
        "frameworkSpecific": True,
        "appSpecific": True,
    },
    "overrides": {
        "allowUserOverride": True,
        "logOverrides": True,
        "flagAfterOverrides": 3,
    },
}


class ExtractionConfig(LLKBModel):
    min_occurrences: int = 2
    predictive_extraction: bool = True
    confidence_threshold: float = 0.7
    max_predictive_per_journey: int = 2
    max_predictive_per_day: int = 5
    min_lines_for_extraction: int = 3
    similarity_threshold: float = 0.8


class RetentionConfig(LLKBModel):
    max_lesson_age: int = 90
    min_success_rate: float = 0.6
    archive_unused: int = 30


class HistoryConfig(LLKBModel):
    retention_days: int = 365


class InjectionConfig(LLKBModel):
    prioritize_by_confidence: bool = True


class ScopesConfig(LLKBModel):
    universal: bool = True
    framework_specific: bool = True
    app_specific: bool = True


class OverridesConfig(LLKBModel):
    allow_user_override: bool = True
    log_overrides: bool = True
    flag_after_overrides: int = 3


class LLKBConfig(LLKBModel):
    version: str = "1.0.0"
    enabled: bool = True
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    injection: InjectionConfig = Field(default_factory=InjectionConfig)
    scopes: ScopesConfig = Field(default_factory=ScopesConfig)
    overrides: OverridesConfig = Field(default_factory=OverridesConfig)


def _merge_one_level(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge override into base; nested sections are merged key by key."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = {**result[key], **value}
        else:
            result[key] = value
    return result


def _env_flag(name: str) -> Optional[bool]:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    return raw.strip().lower() not in ("0", "false", "no", "off")


def load_environment(env_file: Optional[Union[str, Path]] = None) -> None:
    """Load a .env file into os.environ without overriding existing values."""
    path = Path(env_file) if env_file else Path.cwd() / ".env"
    if path.exists():
        load_dotenv(path, override=False)


def resolve_llkb_root(llkb_root: Optional[Union[str, Path]] = None) -> Path:
    """Explicit argument, then LLKB_ROOT, then the default location."""
    if llkb_root:
        return Path(llkb_root)
    load_environment()
    return Path(os.environ.get("LLKB_ROOT", DEFAULT_LLKB_ROOT))


def read_config_file(config_path: Union[str, Path]) -> Dict[str, Any]:
    """
    Read a YAML config file.

    Raises:
        ConfigurationError: the file exists but is not a YAML mapping
    """
    path = Path(config_path)
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a mapping, got {type(data).__name__}")
    return data


def load_llkb_config(llkb_root: Optional[Union[str, Path]] = None) -> LLKBConfig:
    """
    Load config.yml merged over defaults. Never raises: an unreadable or
    invalid file yields the defaults and a warning.
    """
    root = resolve_llkb_root(llkb_root)
    try:
        merged = _merge_one_level(DEFAULT_CONFIG, read_config_file(root / CONFIG_FILENAME))
        config = LLKBConfig.model_validate(merged)
    except (ConfigurationError, ValidationError) as e:
        logger.warning(f"Invalid LLKB config, using defaults: {e}")
        config = LLKBConfig.model_validate(DEFAULT_CONFIG)

    enabled = _env_flag("LLKB_ENABLED")
    if enabled is not None:
        config.enabled = enabled
    return config


def save_llkb_config(llkb_root: Union[str, Path], config: Optional[Dict[str, Any]] = None) -> None:
    root = Path(llkb_root)
    root.mkdir(parents=True, exist_ok=True)
    data = config if config is not None else DEFAULT_CONFIG
    with open(root / CONFIG_FILENAME, "w", encoding="utf-8") as f:
        f.write("# LLKB Configuration\n")
        yaml.safe_dump(data, f, sort_keys=False, default_flow_style=False)


def is_llkb_enabled(llkb_root: Optional[Union[str, Path]] = None) -> bool:
    return load_llkb_config(llkb_root).enabled


def llkb_exists(llkb_root: Optional[Union[str, Path]] = None) -> bool:
    root = resolve_llkb_root(llkb_root)
    return root.is_dir() and (root / CONFIG_FILENAME).exists()


def configure_logging(level: Optional[str] = None) -> None:
    """Attach a console handler to the llkb logger tree (for CLI callers)."""
    load_environment()
    level_name = (level or os.environ.get("LLKB_LOG_LEVEL", "INFO")).upper()
    llkb_logger = logging.getLogger("llkb")
    llkb_logger.setLevel(getattr(logging, level_name, logging.INFO))
    if not llkb_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("[LLKB] %(levelname)s %(name)s: %(message)s"))
        llkb_logger.addHandler(handler)
