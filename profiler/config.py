"""
Profiler Settings Loader

Loads engine defaults from defaults.yaml (shipped next to this file):
the fallback category list, the jank threshold, the query adapter's
top-function limit and the log level.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from .logging_utils import get_logger, set_log_level
from .profile_types import Category

logger = get_logger(__name__)

DEFAULTS_PATH = Path(__file__).parent / 'defaults.yaml'

ImplementationFilter = Literal['combined', 'js', 'cpp']


def _builtin_categories() -> list[Category]:
    return [
        Category(name='Other', color='grey'),
        Category(name='Idle', color='transparent'),
        Category(name='Layout', color='purple'),
        Category(name='JavaScript', color='yellow'),
        Category(name='GC / CC', color='orange'),
        Category(name='Network', color='lightblue'),
        Category(name='Graphics', color='green'),
        Category(name='DOM', color='blue'),
    ]


class ProfilerSettings(BaseModel):
    """Engine-wide defaults."""
    log_level: str = Field(default='WARNING', description="Level for profiler.* loggers")
    jank_threshold_ms: float = Field(default=50.0, gt=0, description="Responsiveness above this becomes a Jank marker")
    top_functions_limit: int = Field(default=50, gt=0, description="Rows in topFunctionsByTotal/BySelf")
    default_implementation: ImplementationFilter = Field(default='combined', description="Implementation filter used when none is given")
    default_categories: list[Category] = Field(
        default_factory=_builtin_categories,
        description="Categories used when a profile has no meta.categories"
    )


def load_settings(path: Optional[Path] = None) -> ProfilerSettings:
    """
    Load settings from a YAML file.

    Args:
        path: File to read; defaults to the packaged defaults.yaml

    Returns:
        ProfilerSettings. A missing or unreadable file falls back to the
        built-in defaults with a warning.
    """
    settings_path = path or DEFAULTS_PATH
    if not settings_path.exists():
        logger.warning("Settings file not found at %s, using built-in defaults", settings_path)
        return ProfilerSettings()

    try:
        with open(settings_path, 'r') as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Failed to read settings from %s: %s", settings_path, e)
        return ProfilerSettings()

    try:
        return ProfilerSettings.model_validate(raw)
    except ValidationError as e:
        logger.warning("Invalid settings in %s, using built-in defaults: %s", settings_path, e)
        return ProfilerSettings()


@lru_cache(maxsize=1)
def get_settings() -> ProfilerSettings:
    """Packaged settings, loaded once. Also applies the configured log level."""
    settings = load_settings()
    set_log_level(settings.log_level)
    return settings


def get_default_categories() -> list[Category]:
    return [category.model_copy(deep=True) for category in get_settings().default_categories]
