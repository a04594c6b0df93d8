"""Scoring of encoded rows with an immutable trained model."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

import numpy as np
import pandas as pd

from risk_advisor_ml.pipelines.errors import SchemaMismatch


class PredictionMode(Enum):
    CLASSIFICATION = "classification"
    REGRESSION = "regression"

    @classmethod
    def parse(cls, raw: str | PredictionMode) -> PredictionMode:
        if isinstance(raw, PredictionMode):
            return raw
        try:
            return cls(str(raw).strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unknown model type '{raw}'. Use 'classification' or 'regression'.") from exc

    def extract(self, model: Any, x: pd.DataFrame, positive_index: int | None) -> np.ndarray:
        """Return one float per row: positive-class probability or the raw estimate."""
        if self is PredictionMode.CLASSIFICATION:
            raw = np.asarray(model.predict_proba(x))
            if raw.ndim != 2 or positive_index is None or raw.shape[1] <= positive_index:
                raise ValueError(f"Unexpected predict_proba shape {raw.shape} for positive index {positive_index}.")
            values = raw[:, positive_index]
        else:
            values = np.asarray(model.predict(x)).reshape(-1)
        return pd.to_numeric(pd.Series(values), errors="coerce").to_numpy(dtype=float)


def resolve_positive_index(model: Any, positive_label: Any | None) -> int:
    classes = getattr(model, "classes_", None)
    if classes is None:
        return 1
    labels = list(np.asarray(classes).tolist())
    if positive_label is None:
        return len(labels) - 1
    for idx, label in enumerate(labels):
        if label == positive_label or str(label) == str(positive_label):
            return idx
    raise ValueError(f"Positive label {positive_label!r} not found in model classes {labels}")


@dataclass(frozen=True)
class PredictionEngine:
    model: Any
    feature_names: tuple[str, ...]
    mode: PredictionMode
    positive_index: int | None = None

    @classmethod
    def from_model(
        cls,
        model: Any,
        feature_names: Sequence[str],
        mode: PredictionMode | str,
        positive_label: Any | None = None,
    ) -> PredictionEngine:
        parsed = PredictionMode.parse(mode)
        positive_index = None
        if parsed is PredictionMode.CLASSIFICATION:
            positive_index = resolve_positive_index(model, positive_label)
        return cls(
            model=model,
            feature_names=tuple(str(f) for f in feature_names),
            mode=parsed,
            positive_index=positive_index,
        )

    def check_schema(self, encoded: pd.DataFrame) -> None:
        cols = [str(c) for c in encoded.columns]
        expected = set(self.feature_names)
        missing = [c for c in self.feature_names if c not in set(cols)]
        extra = [c for c in cols if c not in expected]
        if missing or extra or len(cols) != len(expected):
            raise SchemaMismatch(
                f"Encoded columns differ from training schema. Missing: {missing}; unexpected: {extra}"
            )

    def predict(self, encoded: pd.DataFrame) -> np.ndarray:
        self.check_schema(encoded)
        if encoded.empty:
            return np.empty(0, dtype=float)
        x = encoded.loc[:, list(self.feature_names)]
        return self.mode.extract(self.model, x, self.positive_index)
