"""
Evaluator configuration.

Settings are plain pydantic models, optionally loaded from YAML:

    evaluator:
      memoize_lookups: true
      collaborator_timeout: 5.0
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ReqLangError


class EvaluatorConfig(BaseModel):
    """
    Settings for one or more evaluation calls.

    Attributes:
        memoize_lookups: Reuse registry and probe answers for identical
            queries within a single evaluation call.
        collaborator_timeout: Deadline in seconds for each collaborator
            call; None waits indefinitely.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    memoize_lookups: bool = Field(default=True)
    collaborator_timeout: Optional[float] = Field(default=None, gt=0)


DEFAULT_CONFIG = EvaluatorConfig()


def load_config(path: Union[str, Path]) -> EvaluatorConfig:
    """
    Load evaluator settings from a YAML file.

    A missing or empty file yields the defaults. A top-level
    `evaluator:` key is unwrapped when present.

    Raises:
        ReqLangError: On malformed YAML or invalid settings.
    """
    path = Path(path)
    if not path.exists():
        return DEFAULT_CONFIG

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ReqLangError(f"Malformed config YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ReqLangError(f"Config in {path} must be a mapping")
    if isinstance(data.get("evaluator"), dict):
        data = data["evaluator"]

    try:
        return EvaluatorConfig.model_validate(data)
    except ValidationError as e:
        raise ReqLangError(f"Invalid evaluator config in {path}: {e}") from e
