"""
Configuration loader for the selfie background remover.

Environment variables are centralized here to keep the rest of the code
focused on mask/composite logic and to make operational tuning clear.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


SMOOTHING_STRATEGIES = {"auto", "confidence", "box"}
COMPOSITE_MODES = {"multiply", "replace"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Segmentation collaborator
    segmenter_model_path: Optional[Path] = Field(None)
    segmenter_device: Optional[str] = Field(None)
    segmenter_max_long_edge: int = Field(1024)
    foreground_threshold: float = Field(0.5)

    # Mask synthesis
    mask_smooth_edges: bool = Field(True)
    mask_inverted: bool = Field(False)
    mask_smoothing_strategy: str = Field("auto")
    mask_box_radius: int = Field(2)
    mask_edge_band_low: float = Field(0.05)
    mask_edge_band_high: float = Field(0.95)

    # Compositing
    composite_mode: str = Field("multiply")

    # API
    request_timeout_seconds: int = Field(30)
    log_level: str = Field("INFO")

    @field_validator("mask_smoothing_strategy")
    @classmethod
    def validate_strategy(cls, v: str) -> str:
        v = v.lower()
        if v not in SMOOTHING_STRATEGIES:
            raise ValueError("MASK_SMOOTHING_STRATEGY must be one of auto|confidence|box")
        return v

    @field_validator("composite_mode")
    @classmethod
    def validate_composite_mode(cls, v: str) -> str:
        v = v.lower()
        if v not in COMPOSITE_MODES:
            raise ValueError("COMPOSITE_MODE must be one of multiply|replace")
        return v

    @field_validator("mask_box_radius")
    @classmethod
    def validate_box_radius(cls, v: int) -> int:
        if v < 1:
            raise ValueError("MASK_BOX_RADIUS must be at least 1")
        return v

    @field_validator("foreground_threshold", "mask_edge_band_low", "mask_edge_band_high")
    @classmethod
    def validate_unit_interval(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("value must be within [0, 1]")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings to avoid reparsing env on every call."""
    return Settings()


def edge_band(settings: Optional[Settings] = None) -> tuple[float, float]:
    """
    Return the (low, high) confidence band treated as the uncertain edge.

    Falls back to a sane default band when the configured one is inverted.
    """
    settings = settings or get_settings()
    low, high = settings.mask_edge_band_low, settings.mask_edge_band_high
    if high <= low:
        return 0.05, 0.95
    return low, high
