"""Per-record factor ranking from a linear surrogate.

The primary model may be nonlinear, so contributions come from an auxiliary linear
model fit alongside it: contribution = coefficient * encoded value. The resulting
ranking approximates which inputs pushed a prediction up; it is not an exact
attribution of the primary model's output.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
import pandas as pd

from risk_advisor_ml.pipelines.errors import SchemaMismatch


def contribution_frame(encoded: pd.DataFrame, coefficients: pd.Series) -> pd.DataFrame:
    if len(coefficients) != encoded.shape[1]:
        raise SchemaMismatch(
            f"Got {len(coefficients)} surrogate coefficients for {encoded.shape[1]} encoded columns."
        )
    if list(coefficients.index) != list(encoded.columns):
        missing = [c for c in encoded.columns if c not in coefficients.index]
        if missing:
            raise SchemaMismatch(f"No surrogate coefficient for encoded column(s): {missing}")
        coefficients = coefficients.loc[list(encoded.columns)]
    values = encoded.to_numpy(dtype=float) * coefficients.to_numpy(dtype=float)
    return pd.DataFrame(values, columns=encoded.columns, index=encoded.index)


def order_contributions(contributions: pd.DataFrame) -> tuple[np.ndarray, np.ndarray]:
    """Return (names, weights) arrays, each row sorted by contribution descending.

    Ties keep original column order; NaN contributions sort last.
    """
    values = contributions.to_numpy(dtype=float)
    order = np.argsort(-values, axis=1, kind="stable")
    names = np.asarray(contributions.columns, dtype=object)[order]
    weights = np.take_along_axis(values, order, axis=1)
    return names, weights


def rank_factors(encoded_row: pd.Series, coefficients: pd.Series) -> list[str]:
    contributions = contribution_frame(encoded_row.to_frame().T, coefficients)
    names, _ = order_contributions(contributions)
    return [str(n) for n in names[0]]


def clamp_factor_count(number_of_factors: int | None, n_columns: int) -> int:
    if number_of_factors is None or pd.isna(number_of_factors):
        return n_columns
    count = int(number_of_factors)
    if count < 1:
        raise ValueError(f"number_of_factors must be positive, got {number_of_factors!r}")
    return min(count, n_columns)


@dataclass(frozen=True)
class SurrogateImportanceRanker:
    coefficients: pd.Series

    @classmethod
    def from_values(cls, coefficients: Sequence[float], feature_names: Sequence[str]) -> SurrogateImportanceRanker:
        if len(coefficients) != len(feature_names):
            raise SchemaMismatch(
                f"Got {len(coefficients)} surrogate coefficients for {len(feature_names)} encoded columns."
            )
        return cls(pd.Series(np.asarray(coefficients, dtype=float), index=[str(f) for f in feature_names]))

    def contributions(self, encoded: pd.DataFrame) -> pd.DataFrame:
        return contribution_frame(encoded, self.coefficients)

    def rank(self, encoded_row: pd.Series) -> list[str]:
        return rank_factors(encoded_row, self.coefficients)

    def ordered_factors(self, encoded: pd.DataFrame) -> tuple[np.ndarray, np.ndarray]:
        return order_contributions(self.contributions(encoded))

    def top_factors(
        self,
        encoded: pd.DataFrame,
        number_of_factors: int | None = None,
    ) -> tuple[np.ndarray, np.ndarray]:
        names, weights = self.ordered_factors(encoded)
        count = clamp_factor_count(number_of_factors, encoded.shape[1])
        return names[:, :count], weights[:, :count]
