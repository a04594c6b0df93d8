"""Training-time feature encoding shared by scoring and counterfactual generation.

Numeric columns pass through a median imputer; categorical columns are imputed with
the most frequent level and one-hot encoded as ``<variable>_<level>``. The encoder
remembers the source variable of every encoded column and the levels seen at fit time,
which is what the counterfactual generator needs to remap dummy columns.
With ``impute=False`` any missing input value is rejected instead of filled.
"""

from __future__ import annotations

from typing import Any

import numpy as np
import pandas as pd
from sklearn.compose import ColumnTransformer
from sklearn.impute import SimpleImputer
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import OneHotEncoder

from risk_advisor_ml.pipelines.errors import SchemaMismatch, UnknownLevel


def _as_level(value: Any) -> Any:
    if pd.isna(value):
        return np.nan
    return str(value)


class FeatureEncoder:
    def __init__(self, *, impute: bool = True) -> None:
        self.impute = impute
        self.input_cols: list[str] = []
        self.numeric_cols: list[str] = []
        self.categorical_cols: list[str] = []
        self.levels: dict[str, list[str]] = {}
        self.feature_names: list[str] = []
        self.source_of: dict[str, str] = {}
        self._dummy_of: dict[tuple[str, str], str] = {}
        self._transformer: ColumnTransformer | None = None

    def fit(self, x: pd.DataFrame) -> FeatureEncoder:
        self.input_cols = [str(c) for c in x.columns]
        self.numeric_cols = [c for c in self.input_cols if pd.api.types.is_numeric_dtype(x[c])]
        self.categorical_cols = [c for c in self.input_cols if c not in set(self.numeric_cols)]
        self.levels = {}

        formatted = self.check_complete(self.format_columns(x))
        transformers: list[tuple[str, object, list[str]]] = []
        if self.numeric_cols:
            transformers.append(
                ("num", SimpleImputer(strategy="median", keep_empty_features=True), self.numeric_cols)
            )
        if self.categorical_cols:
            transformers.append(
                (
                    "cat",
                    Pipeline(
                        [
                            ("imputer", SimpleImputer(strategy="most_frequent")),
                            ("onehot", OneHotEncoder(handle_unknown="error", sparse_output=False)),
                        ]
                    ),
                    self.categorical_cols,
                )
            )
        if not transformers:
            raise ValueError("No usable numeric/categorical columns found for encoding.")

        self._transformer = ColumnTransformer(
            transformers=transformers,
            remainder="drop",
            verbose_feature_names_out=False,
        )
        self._transformer.fit(formatted)

        self.feature_names = []
        self.source_of = {}
        self._dummy_of = {}
        for col in self.numeric_cols:
            self.feature_names.append(col)
            self.source_of[col] = col
        if self.categorical_cols:
            onehot = self._transformer.named_transformers_["cat"].named_steps["onehot"]
            for col, categories in zip(self.categorical_cols, onehot.categories_, strict=True):
                self.levels[col] = [str(level) for level in categories]
                for level in self.levels[col]:
                    name = f"{col}_{level}"
                    self.feature_names.append(name)
                    self.source_of[name] = col
                    self._dummy_of[(col, level)] = name
        return self

    def is_categorical(self, variable: str) -> bool:
        return variable in self.levels

    def is_numeric(self, variable: str) -> bool:
        return variable in self.numeric_cols

    def dummy_column(self, variable: str, level: Any) -> str:
        key = (variable, str(level))
        if key not in self._dummy_of:
            raise UnknownLevel(
                f"Level {level!r} of '{variable}' was not seen at training time. "
                f"Known levels: {self.levels.get(variable, [])}"
            )
        return self._dummy_of[key]

    def dummy_columns(self, variable: str) -> list[str]:
        return [self._dummy_of[(variable, level)] for level in self.levels[variable]]

    def observed_value(self, encoded_row: pd.Series, variable: str) -> Any:
        if self.is_numeric(variable):
            return float(encoded_row[variable])
        for level in self.levels[variable]:
            if float(encoded_row[self._dummy_of[(variable, level)]]) == 1.0:
                return level
        return np.nan

    def format_columns(self, x: pd.DataFrame) -> pd.DataFrame:
        missing = [c for c in self.input_cols if c not in x.columns]
        if missing:
            raise SchemaMismatch(f"Missing required column(s): {missing}")

        out = x[self.input_cols].copy()
        for col in self.numeric_cols:
            out[col] = pd.to_numeric(out[col], errors="coerce").astype(float)
        for col in self.categorical_cols:
            out[col] = out[col].map(_as_level).astype(object)
        return out

    def check_complete(self, formatted: pd.DataFrame) -> pd.DataFrame:
        if self.impute:
            return formatted
        incomplete = [c for c in self.input_cols if bool(formatted[c].isna().any())]
        if incomplete:
            raise ValueError(f"Missing values in column(s) {incomplete} and imputation is disabled.")
        return formatted

    def transform(self, x: pd.DataFrame) -> pd.DataFrame:
        if self._transformer is None:
            raise RuntimeError("FeatureEncoder must be fit before transform.")

        formatted = self.check_complete(self.format_columns(x))
        for col in self.categorical_cols:
            seen = formatted[col].dropna()
            unknown = sorted(set(seen.tolist()) - set(self.levels[col]))
            if unknown:
                raise UnknownLevel(f"Column '{col}' has level(s) not seen at training time: {unknown}")

        encoded = self._transformer.transform(formatted)
        return pd.DataFrame(np.asarray(encoded, dtype=float), columns=self.feature_names, index=x.index)
