"""Deployment and recommendation settings."""

from __future__ import annotations

import json
import numbers
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pandas as pd

from risk_advisor_ml.pipelines.common import dedupe_keep_order


def _as_tuple(values: Any) -> tuple[Any, ...]:
    """Lists, arrays and Series become tuples; strings and scalars become one-element tuples."""
    if pd.api.types.is_list_like(values):
        return tuple(values.tolist() if hasattr(values, "tolist") else values)
    return (values,)


@dataclass(frozen=True)
class DeploymentParams:
    type: str
    grain_col: str
    predicted_col: str
    impute: bool = True
    debug: bool = False
    cores: int = 1
    model_name: str | None = None


@dataclass(frozen=True)
class RecommendationConfig:
    modifiable_variables: tuple[str, ...]
    variable_levels: Mapping[str, tuple[Any, ...]] = field(default_factory=dict)
    grain_column_ids: tuple[Any, ...] | None = None
    smaller_better: bool = True
    repeated_factors: bool = False
    num_top_factors: int = 3

    @classmethod
    def build(
        cls,
        modifiable_variables: Sequence[str],
        variable_levels: Mapping[str, Sequence[Any]] | None = None,
        grain_column_ids: Sequence[Any] | None = None,
        smaller_better: bool = True,
        repeated_factors: bool = False,
        num_top_factors: int = 3,
    ) -> RecommendationConfig:
        variables = tuple(dedupe_keep_order(str(v) for v in _as_tuple(modifiable_variables)))
        if not variables:
            raise ValueError("At least one modifiable variable is required.")
        if (
            isinstance(num_top_factors, bool)
            or not isinstance(num_top_factors, numbers.Integral)
            or num_top_factors < 1
        ):
            raise ValueError(f"num_top_factors must be a positive integer, got {num_top_factors!r}")

        levels = {str(name): _as_tuple(values) for name, values in (variable_levels or {}).items()}
        ids = None if grain_column_ids is None else _as_tuple(grain_column_ids)

        return cls(
            modifiable_variables=variables,
            variable_levels=levels,
            grain_column_ids=ids,
            smaller_better=bool(smaller_better),
            repeated_factors=bool(repeated_factors),
            num_top_factors=int(num_top_factors),
        )


def load_recommendation_config(path: Path) -> RecommendationConfig:
    if not path.exists():
        raise FileNotFoundError(f"Missing recommendation config: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Could not parse recommendation config: {path}") from exc
    if not isinstance(parsed, dict):
        raise ValueError("Recommendation config did not decode to an object.")
    if "modifiable_variables" not in parsed:
        raise ValueError("Recommendation config missing 'modifiable_variables'.")

    return RecommendationConfig.build(
        modifiable_variables=parsed["modifiable_variables"],
        variable_levels=parsed.get("variable_levels"),
        grain_column_ids=parsed.get("grain_column_ids"),
        smaller_better=parsed.get("smaller_better", True),
        repeated_factors=parsed.get("repeated_factors", False),
        num_top_factors=parsed.get("num_top_factors", 3),
    )
