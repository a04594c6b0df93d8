"""Assembly of the standard deployment, top-factor and recommendation tables."""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from risk_advisor_ml.pipelines.prediction import PredictionMode
from risk_advisor_ml.pipelines.recommend import RecommendationRow

SLOT_FIELDS = ("TXT", "CurrentValue", "Value", "DeltaNBR", "DesirabilityNBR")
ISSUE_COL = "ScoringIssue"


def prediction_column(mode: PredictionMode) -> str:
    if mode is PredictionMode.CLASSIFICATION:
        return "PredictedProbNBR"
    return "PredictedValueNBR"


def factor_columns(num_factors: int) -> list[str]:
    return [f"Factor{i}TXT" for i in range(1, num_factors + 1)]


def weight_columns(num_factors: int) -> list[str]:
    return [f"Factor{i}WT" for i in range(1, num_factors + 1)]


def recommendation_columns(num_top_factors: int) -> list[str]:
    return [f"Modify{i}{field}" for i in range(1, num_top_factors + 1) for field in SLOT_FIELDS]


def collapse_to_source(ordered_factors: Sequence[str], source_of: Mapping[str, str]) -> list[str]:
    """Map encoded names to source variables and drop consecutive repeats."""
    out: list[str] = []
    for name in ordered_factors:
        source = source_of.get(str(name), str(name))
        if not out or out[-1] != source:
            out.append(source)
    return out


def _pad(values: Sequence[Any], width: int) -> list[Any]:
    padded = list(values[:width])
    return padded + [np.nan] * (width - len(padded))


def build_factor_output(
    grain: pd.Series,
    predictions: np.ndarray,
    ordered_names: np.ndarray,
    source_of: Mapping[str, str],
    mode: PredictionMode,
    num_factors: int = 3,
) -> pd.DataFrame:
    scores = np.asarray(predictions, dtype=float)
    rows = [_pad(collapse_to_source(list(names), source_of), num_factors) for names in ordered_names]
    out = pd.DataFrame(rows, columns=factor_columns(num_factors), index=grain.index)
    out.insert(0, prediction_column(mode), scores)
    out.insert(0, str(grain.name), grain.to_numpy())
    issues = pd.Series(np.nan, index=out.index, dtype=object)
    issues[~np.isfinite(scores)] = "non-finite prediction"
    out[ISSUE_COL] = issues
    return out.reset_index(drop=True)


def build_top_factor_output(
    grain: pd.Series,
    names: np.ndarray,
    weights: np.ndarray,
    include_weights: bool = False,
) -> pd.DataFrame:
    count = names.shape[1]
    data: dict[str, Any] = {str(grain.name): grain.to_numpy()}
    for i, (txt_col, wt_col) in enumerate(zip(factor_columns(count), weight_columns(count), strict=True)):
        data[txt_col] = names[:, i]
        if include_weights:
            data[wt_col] = weights[:, i]
    return pd.DataFrame(data)


def build_recommendation_output(
    grain_col: str,
    rows: Sequence[RecommendationRow],
    mode: PredictionMode,
    num_top_factors: int,
) -> pd.DataFrame:
    columns = [grain_col, prediction_column(mode), *recommendation_columns(num_top_factors), ISSUE_COL]
    records: list[list[Any]] = []
    for row in rows:
        values: list[Any] = [row.grain, row.baseline]
        for slot in row.slots:
            if slot is None:
                values.extend([np.nan] * len(SLOT_FIELDS))
            else:
                values.extend([slot.variable, slot.current, slot.value, slot.delta, slot.desirability])
        values.append("; ".join(row.issues) if row.issues else np.nan)
        records.append(values)
    out = pd.DataFrame(records, columns=columns)
    for i in range(1, num_top_factors + 1):
        for field in ("CurrentValue", "Value"):
            out[f"Modify{i}{field}"] = out[f"Modify{i}{field}"].astype(object)
    return out


def attach_metadata(
    df: pd.DataFrame,
    model_name: str,
    generated_at: datetime | None = None,
) -> pd.DataFrame:
    stamp = generated_at or datetime.now()
    out = df.copy()
    out.insert(0, "LastLoadDTS", pd.Timestamp(stamp))
    out.insert(0, "BindingNM", model_name)
    out.insert(0, "BindingID", 0)
    return out


def write_run_metadata(out_path: Path, df: pd.DataFrame, metadata: Mapping[str, Any]) -> None:
    payload = {
        **metadata,
        "n_rows": int(len(df)),
        "columns": [str(c) for c in df.columns],
    }
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with out_path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, default=str)


def save_top_factor_plot(
    grain_value: Any,
    names: Sequence[str],
    weights: Sequence[float],
    out_path: Path,
) -> None:
    vals = [float(w) for w in weights][::-1]
    labels = [str(n) for n in names][::-1]
    colors = ["#1b9e77" if v >= 0 else "#d95f02" for v in vals]
    plt.figure(figsize=(10, 6))
    plt.barh(labels, vals, color=colors)
    plt.axvline(0.0, color="#555555", linewidth=1)
    plt.xlabel("Surrogate contribution (coefficient x encoded value)")
    plt.title(f"Top factors: {grain_value}")
    plt.tight_layout()
    plt.savefig(out_path, dpi=150)
    plt.close()
