import os
import re
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_EXTENSIONS = [".flac", ".wav", ".ape", ".m4a", ".ogg", ".wma"]

_BITRATE_RE = re.compile(r"^\d+(\.\d+)?[kKmM]?$")


def _default_jobs() -> int:
    return os.cpu_count() or 1


def _normalize_extension(ext: str) -> str:
    ext = ext.strip().lower()
    return ext if ext.startswith(".") else f".{ext}"


class GeneralConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    bitrate: str = "320k"
    jobs: int = Field(default_factory=_default_jobs, gt=0)
    log_path: Optional[str] = None
    dry_run: bool = False
    resume: bool = False
    verbose: bool = False
    quality_check: bool = False
    debug: bool = False
    extensions: List[str] = Field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    output_extension: str = ".mp3"
    audio_codec: str = "libmp3lame"
    id3v2_version: int = Field(default=3, ge=3, le=4)
    progress_interval_s: float = Field(default=5.0, gt=0)
    # Expected output/input size band for lossy output
    min_size_ratio: float = Field(default=0.05, ge=0.0, le=1.0)
    max_size_ratio: float = Field(default=0.5, gt=0.0)
    duration_tolerance_s: float = Field(default=1.0, ge=0.0)
    estimated_output_ratio: float = Field(default=0.1, gt=0.0, le=1.0)

    @field_validator("bitrate")
    @classmethod
    def validate_bitrate(cls, v: str) -> str:
        v = v.strip()
        if not _BITRATE_RE.match(v):
            raise ValueError(f"Invalid bitrate '{v}'. Use a number with optional k/M suffix, e.g. 256k.")
        return v

    @field_validator("extensions")
    @classmethod
    def validate_extensions(cls, v: List[str]) -> List[str]:
        normalized = [_normalize_extension(ext) for ext in v if ext and ext.strip()]
        if not normalized:
            raise ValueError("extensions must contain at least one entry")
        return normalized

    @field_validator("output_extension")
    @classmethod
    def validate_output_extension(cls, v: str) -> str:
        return _normalize_extension(v)

    @model_validator(mode="after")
    def validate_size_band(self):
        if self.min_size_ratio >= self.max_size_ratio:
            raise ValueError("min_size_ratio must be < max_size_ratio")
        if self.output_extension in self.extensions:
            raise ValueError(f"output_extension {self.output_extension} cannot also be an input extension")
        return self


class AppConfig(BaseModel):
    """Immutable configuration of a single run."""

    model_config = ConfigDict(frozen=True)

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    source_dir: Optional[Path] = None
    target_dir: Optional[Path] = None


def apply_overrides(config: AppConfig, source_dir: Optional[Path] = None, target_dir: Optional[Path] = None, **general_overrides) -> AppConfig:
    """Returns a new, validated AppConfig with CLI values layered on top.

    Overrides whose value is None are ignored so that unset CLI options keep the
    value from the config file.
    """
    general_data = config.general.model_dump()
    general_data.update({k: v for k, v in general_overrides.items() if v is not None})
    return AppConfig(
        general=GeneralConfig(**general_data),
        source_dir=source_dir if source_dir is not None else config.source_dir,
        target_dir=target_dir if target_dir is not None else config.target_dir,
    )
