"""JSON script loading and parameter resolution.

A script looks like::

    {
      "global_settings": {"model": "veo-3.1-generate-preview", "aspect_ratio": "16:9"},
      "segments": [
        {"prompt": "A lighthouse at dawn", "duration": 8},
        {"prompt": "Waves crash", "duration": 6, "overrides": {"negative_prompt": "people"}}
      ]
    }

Global settings are merged with each segment's overrides exactly once, here,
so every SegmentSpec leaves this module with a fully resolved ParameterSet.
"""

import json
from pathlib import Path
from typing import Any, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError, model_validator

from .jobs.models import ParameterSet, SegmentSpec

DEFAULT_MODEL = "veo-2.0-generate-001"
DEFAULT_FPS = 24
DEFAULT_PERSON_GENERATION = "allow_adult"
DEFAULT_ASPECT_RATIO = "16:9"
DEFAULT_RESOLUTION = "720p"
DEFAULT_DURATION_S = 8


class ScriptError(Exception):
    """The script file is missing, unreadable or invalid."""


def _drop_empty(data: Any) -> Any:
    # "" and 0 in a script mean "not set", not "set to nothing"
    if isinstance(data, dict):
        return {k: v for k, v in data.items() if v not in ("", 0, None) or isinstance(v, bool)}
    return data


class GlobalSettings(BaseModel):
    """Script-wide defaults."""

    model: str = DEFAULT_MODEL
    aspect_ratio: str = DEFAULT_ASPECT_RATIO
    resolution: str = DEFAULT_RESOLUTION
    person_generation: str = DEFAULT_PERSON_GENERATION
    generate_audio: bool = False
    negative_prompt: str = ""
    fps: int = Field(default=DEFAULT_FPS, gt=0)

    @model_validator(mode="before")
    @classmethod
    def missing_means_default(cls, data: Any) -> Any:
        return _drop_empty(data)


class SegmentOverrides(BaseModel):
    """Per-segment parameter overrides; unset fields inherit global settings."""

    model: Optional[str] = None
    aspect_ratio: Optional[str] = None
    resolution: Optional[str] = None
    person_generation: Optional[str] = None
    generate_audio: Optional[bool] = None
    negative_prompt: Optional[str] = None
    fps: Optional[int] = Field(default=None, gt=0)

    @model_validator(mode="before")
    @classmethod
    def missing_means_inherit(cls, data: Any) -> Any:
        return _drop_empty(data)


class ScriptSegment(BaseModel):
    prompt: str = Field(..., min_length=1)
    duration: int = Field(default=DEFAULT_DURATION_S, gt=0)
    overrides: SegmentOverrides = Field(default_factory=SegmentOverrides)


class Script(BaseModel):
    global_settings: GlobalSettings = Field(default_factory=GlobalSettings)
    segments: List[ScriptSegment] = Field(..., min_length=1)


def load_script(path: Union[str, Path]) -> Script:
    """Read and validate a JSON script.

    Raises:
        ScriptError: If the file is missing, not JSON, or fails validation
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ScriptError(f"Script not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ScriptError(f"Script is not valid JSON: {path}: {e}") from e

    try:
        return Script.model_validate(data)
    except ValidationError as e:
        raise ScriptError(f"Invalid script {path}: {e}") from e


def resolve_parameters(
    global_settings: GlobalSettings, overrides: Optional[SegmentOverrides] = None
) -> ParameterSet:
    """Merge global settings with one segment's overrides."""
    merged = global_settings.model_dump()
    if overrides is not None:
        merged.update(overrides.model_dump(exclude_none=True))
    return ParameterSet(**merged)


def build_segments(script: Script) -> List[SegmentSpec]:
    """Turn a script into SegmentSpecs with 1-based indices.

    Raises:
        ScriptError: If a segment resolves to invalid parameters
    """
    segments = []
    for i, seg in enumerate(script.segments):
        try:
            segments.append(
                SegmentSpec(
                    index=i + 1,
                    prompt=seg.prompt,
                    duration=seg.duration,
                    parameters=resolve_parameters(script.global_settings, seg.overrides),
                )
            )
        except ValidationError as e:
            raise ScriptError(f"Segment {i + 1} has invalid parameters: {e}") from e
    return segments
