"""Counterfactual "what-if" recommendations for modifiable variables.

For every selected record and every modifiable variable, the observed encoded row is
copied once per candidate value with only that variable substituted (dummy columns
remapped for categoricals, the column overwritten for numerics). Each copy is scored
and compared with the record's baseline score:

    delta = candidate_score - baseline
    desirability = -delta if smaller_better else delta

Variables are evaluated independently against the observed row; no joint
combinations are searched. Deltas are associative model signal, not causal effects.
"""

from __future__ import annotations

import logging
from collections.abc import Hashable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from risk_advisor_ml.pipelines.common import dedupe_keep_order, values_equal
from risk_advisor_ml.pipelines.config import RecommendationConfig
from risk_advisor_ml.pipelines.encoding import FeatureEncoder
from risk_advisor_ml.pipelines.errors import (
    EmptyCandidateSet,
    GrainNotFound,
    NumericLevelsRequired,
    SchemaMismatch,
)
from risk_advisor_ml.pipelines.prediction import PredictionEngine

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
    variable: str
    value: Any
    current: Any
    score: float
    delta: float
    desirability: float
    variable_order: int
    candidate_order: int


@dataclass(frozen=True)
class RecommendationRow:
    grain: Any
    baseline: float
    slots: tuple[Candidate | None, ...]
    issues: tuple[str, ...] = ()


def desirability(delta: float, smaller_better: bool) -> float:
    return -delta if smaller_better else delta


def resolve_variable_levels(
    encoder: FeatureEncoder,
    modifiable_variables: Sequence[str],
    variable_levels: Mapping[str, Sequence[Any]] | None = None,
) -> dict[str, list[Any]]:
    levels_in = dict(variable_levels or {})
    out: dict[str, list[Any]] = {}
    for variable in dedupe_keep_order(modifiable_variables):
        if encoder.is_categorical(variable):
            raw = levels_in.get(variable)
            candidates = list(encoder.levels[variable]) if raw is None else [str(v) for v in raw]
            for level in candidates:
                encoder.dummy_column(variable, level)
        elif encoder.is_numeric(variable):
            raw = levels_in.get(variable)
            if raw is None:
                raise NumericLevelsRequired(
                    f"Numeric variable '{variable}' needs explicit candidate values in variable_levels."
                )
            candidates = []
            for value in raw:
                try:
                    candidates.append(float(value))
                except (TypeError, ValueError) as exc:
                    raise ValueError(f"Candidate {value!r} for numeric variable '{variable}' is not numeric.") from exc
        else:
            raise SchemaMismatch(f"Modifiable variable '{variable}' is not a model input column.")

        candidates = dedupe_keep_order(candidates)
        if not candidates:
            raise EmptyCandidateSet(f"Modifiable variable '{variable}' has no candidate values.")
        out[variable] = candidates

    unused = sorted(set(levels_in) - set(out))
    if unused:
        LOGGER.warning("Ignoring variable_levels for non-modifiable variable(s): %s", unused)
    return out


def resolve_grain_positions(grain: pd.Series, grain_column_ids: Sequence[Any] | None) -> list[int]:
    if grain_column_ids is None:
        return list(range(len(grain)))

    values = grain.tolist()
    first_pos: dict[Any, int] = {}
    for pos, value in enumerate(values):
        first_pos.setdefault(value, pos)

    positions: list[int] = []
    missing: list[Any] = []
    for requested in grain_column_ids:
        pos = first_pos.get(requested) if isinstance(requested, Hashable) else None
        if pos is None:
            pos = next((i for i, v in enumerate(values) if values_equal(v, requested)), None)
        if pos is None:
            missing.append(requested)
        else:
            positions.append(pos)
    if missing:
        raise GrainNotFound(f"Grain ID(s) not found in '{grain.name}': {missing}")
    return positions


def build_counterfactual_rows(
    observed: pd.Series,
    variable: str,
    candidates: Sequence[Any],
    encoder: FeatureEncoder,
) -> pd.DataFrame:
    frame = pd.DataFrame(
        np.tile(observed.to_numpy(dtype=float), (len(candidates), 1)),
        columns=observed.index,
    )
    if encoder.is_categorical(variable):
        frame.loc[:, encoder.dummy_columns(variable)] = 0.0
        for i, level in enumerate(candidates):
            frame.iloc[i, frame.columns.get_loc(encoder.dummy_column(variable, level))] = 1.0
    else:
        frame[variable] = np.asarray(candidates, dtype=float)
    return frame


def score_candidates(
    engine: PredictionEngine,
    encoder: FeatureEncoder,
    observed: pd.Series,
    baseline: float,
    levels: Mapping[str, Sequence[Any]],
    smaller_better: bool,
) -> tuple[list[Candidate], list[str]]:
    frames: list[pd.DataFrame] = []
    keys: list[tuple[int, str, int, Any]] = []
    for var_idx, (variable, candidates) in enumerate(levels.items()):
        frames.append(build_counterfactual_rows(observed, variable, candidates, encoder))
        keys.extend((var_idx, variable, cand_idx, value) for cand_idx, value in enumerate(candidates))

    batch = pd.concat(frames, ignore_index=True)
    scores = engine.predict(batch)
    unchanged = (batch.to_numpy(dtype=float) == observed.to_numpy(dtype=float)).all(axis=1)

    out: list[Candidate] = []
    issues: list[str] = []
    currents = {variable: encoder.observed_value(observed, variable) for variable in levels}
    for (var_idx, variable, cand_idx, value), score, same in zip(keys, scores, unchanged, strict=True):
        if not np.isfinite(score):
            issues.append(f"non-finite prediction for {variable}={value}")
            continue
        delta = 0.0 if same else float(score) - baseline
        out.append(
            Candidate(
                variable=variable,
                value=value,
                current=currents[variable],
                score=float(score),
                delta=delta,
                desirability=desirability(delta, smaller_better),
                variable_order=var_idx,
                candidate_order=cand_idx,
            )
        )
    return out, issues


def select_candidates(candidates: Sequence[Candidate], repeated_factors: bool) -> list[Candidate]:
    if repeated_factors:
        kept = list(candidates)
    else:
        best: dict[str, Candidate] = {}
        for cand in candidates:
            current = best.get(cand.variable)
            if current is None or cand.desirability > current.desirability:
                best[cand.variable] = cand
        kept = list(best.values())
    return sorted(kept, key=lambda c: (-c.desirability, c.variable_order, c.candidate_order))


def recommend_record(
    engine: PredictionEngine,
    encoder: FeatureEncoder,
    observed: pd.Series,
    grain_value: Any,
    levels: Mapping[str, Sequence[Any]],
    config: RecommendationConfig,
) -> RecommendationRow:
    baseline = float(engine.predict(observed.to_frame().T)[0])
    empty = (None,) * config.num_top_factors
    if not np.isfinite(baseline):
        return RecommendationRow(grain_value, baseline, empty, ("non-finite baseline prediction",))

    candidates, issues = score_candidates(engine, encoder, observed, baseline, levels, config.smaller_better)
    ranked = select_candidates(candidates, config.repeated_factors)[: config.num_top_factors]
    slots = tuple(ranked) + empty[len(ranked) :]
    return RecommendationRow(grain_value, baseline, slots, tuple(issues))


def recommend(
    engine: PredictionEngine,
    encoder: FeatureEncoder,
    encoded: pd.DataFrame,
    grain: pd.Series,
    config: RecommendationConfig,
    *,
    n_jobs: int = 1,
    logger: logging.Logger | None = None,
) -> list[RecommendationRow]:
    log = logger or LOGGER
    engine.check_schema(encoded)
    levels = resolve_variable_levels(encoder, config.modifiable_variables, config.variable_levels)
    positions = resolve_grain_positions(grain, config.grain_column_ids)

    log.debug(
        "Scoring %d record(s) x %d candidate(s)",
        len(positions),
        sum(len(v) for v in levels.values()),
    )
    rows = Parallel(n_jobs=n_jobs)(
        delayed(recommend_record)(
            engine,
            encoder,
            encoded.iloc[pos],
            grain.iloc[pos],
            levels,
            config,
        )
        for pos in positions
    )

    for row in rows:
        if row.issues:
            log.warning("Scoring issue(s) for %s=%s: %s", grain.name, row.grain, "; ".join(row.issues))
    return list(rows)
