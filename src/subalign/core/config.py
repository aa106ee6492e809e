"""Configuration system for subalign.

Layered config loading (lowest to highest priority):
1. config/default.toml (shipped with package)
2. ~/.config/subalign/config.toml (user-level)
3. ./subalign.toml (project-level)
4. Explicit overrides passed to load_config()

Environment variables (SUBALIGN_CACHE__PATH, etc.) are read by pydantic
settings for keys none of the layers above set.
"""

from __future__ import annotations

import tomllib
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_PACKAGE_ROOT = Path(__file__).resolve().parent.parent.parent.parent
_DEFAULT_CONFIG = _PACKAGE_ROOT / "config" / "default.toml"
_USER_CONFIG = Path.home() / ".config" / "subalign" / "config.toml"
_PROJECT_CONFIG = Path("subalign.toml")


class AlignmentConfig(BaseModel):
    min_overlap_ratio: float = Field(default=0.2, ge=0.0, le=1.0)
    window_seconds: float = Field(default=3.0, ge=0.0)  # candidate search window
    overlap_weight: float = Field(default=0.7, ge=0.0)
    similarity_weight: float = Field(default=0.3, ge=0.0)


class SegmenterConfig(BaseModel):
    backend: str = "webrtc"  # "webrtc" or "energy"
    sample_rate: int = 16000
    frame_ms: int = 30
    aggressiveness: int = Field(default=2, ge=0, le=3)  # webrtc only
    energy_threshold_db: float = -35.0  # energy only
    padding_ms: int = 200
    merge_gap_ms: int = 300
    min_speech_ms: int = 250
    max_interval_seconds: float = 30.0


class TranscriptionConfig(BaseModel):
    model: str = "groq/whisper-large-v3-turbo"
    api_base: str | None = None  # Custom API endpoint (e.g. self-hosted Whisper)
    language: str = "fr"
    engine_version: str | None = None  # defaults to "litellm:<model>"
    timeout: float = 60.0
    max_attempts: int = Field(default=5, ge=1)
    initial_backoff: float = 1.0
    backoff_multiplier: float = 2.0
    max_backoff: float = 30.0
    max_concurrency: int = Field(default=4, ge=1)
    allow_partial: bool = False


class CacheConfig(BaseModel):
    enabled: bool = True
    path: Path | None = None  # defaults to <workspace_dir>/.cache/transcripts.sqlite3


class SubalignConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SUBALIGN_",
        env_nested_delimiter="__",
    )

    alignment: AlignmentConfig = AlignmentConfig()
    segmenter: SegmenterConfig = SegmenterConfig()
    transcription: TranscriptionConfig = TranscriptionConfig()
    cache: CacheConfig = CacheConfig()
    workspace_dir: Path = Path("./subalign_workspace")

    @property
    def cache_path(self) -> Path:
        """Transcription cache database, under the shared workspace cache."""
        if self.cache.path is not None:
            return self.cache.path
        return self.workspace_dir / ".cache" / "transcripts.sqlite3"


def _load_toml(path: Path) -> dict:
    """Load a TOML file if it exists, return empty dict otherwise."""
    if path.is_file():
        with open(path, "rb") as f:
            return tomllib.load(f)
    return {}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(**overrides: object) -> SubalignConfig:
    """Load configuration from all layers and merge.

    Args:
        **overrides: Direct overrides. Keys can be dot-separated
            (e.g. alignment.window_seconds=5.0).
    """
    # API keys for the transcription provider (GROQ_API_KEY, OPENAI_API_KEY, ...)
    load_dotenv(override=False)

    # Layer 1-3: TOML files
    config_data: dict = {}
    for path in (_DEFAULT_CONFIG, _USER_CONFIG, _PROJECT_CONFIG):
        layer = _load_toml(path)
        config_data = _deep_merge(config_data, layer)

    # Flatten 'general' section into top-level
    if "general" in config_data:
        general = config_data.pop("general")
        config_data = _deep_merge(config_data, general)

    # Apply explicit overrides (dot-separated keys)
    for key, value in overrides.items():
        if value is None:
            continue
        parts = key.split(".")
        target = config_data
        for part in parts[:-1]:
            target = target.setdefault(part, {})
        target[parts[-1]] = value

    # Layer 4: env vars are handled by Pydantic BaseSettings
    return SubalignConfig(**config_data)
