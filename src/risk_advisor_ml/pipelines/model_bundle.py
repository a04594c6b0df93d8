"""Fit and persist the model bundle consumed by deployment.

The bundle pairs the primary model with a linear surrogate fit on the same encoded
columns. The surrogate is used only to rank factors, never for scoring.

Run:
  python -m risk_advisor_ml.pipelines.model_bundle --type classification \
      --grain-col PatientEncounterID --predicted-col ThirtyDayReadmitFLG
"""

from __future__ import annotations

import argparse
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import joblib
import numpy as np
import pandas as pd
from sklearn.ensemble import RandomForestClassifier, RandomForestRegressor
from sklearn.linear_model import LinearRegression, LogisticRegression

from risk_advisor_ml.pipelines.common import load_dataset
from risk_advisor_ml.pipelines.encoding import FeatureEncoder
from risk_advisor_ml.pipelines.paths import project_root, resolve_data_path
from risk_advisor_ml.pipelines.prediction import PredictionMode, resolve_positive_index

LOGGER = logging.getLogger(__name__)


def _build_random_forest(mode: PredictionMode, seed: int, cores: int) -> object:
    if mode is PredictionMode.CLASSIFICATION:
        return RandomForestClassifier(n_estimators=200, random_state=seed, n_jobs=cores)
    return RandomForestRegressor(n_estimators=200, random_state=seed, n_jobs=cores)


def _build_catboost(mode: PredictionMode, seed: int, cores: int) -> object:
    from catboost import CatBoostClassifier, CatBoostRegressor

    params: dict[str, Any] = {
        "iterations": 300,
        "learning_rate": 0.05,
        "depth": 6,
        "random_seed": seed,
        "thread_count": cores,
        "verbose": False,
        "allow_writing_files": False,
    }
    if mode is PredictionMode.CLASSIFICATION:
        return CatBoostClassifier(**params)
    return CatBoostRegressor(loss_function="RMSE", **params)


@dataclass(frozen=True)
class ModelFamily:
    name: str
    short_name: str
    build: Callable[[PredictionMode, int, int], object]


MODEL_FAMILIES: dict[str, ModelFamily] = {
    "random_forest": ModelFamily("RandomForest", "RF", _build_random_forest),
    "catboost": ModelFamily("CatBoost", "CB", _build_catboost),
}


def get_model_family(key: str) -> ModelFamily:
    family = MODEL_FAMILIES.get(str(key).strip().lower())
    if family is None:
        raise ValueError(f"Unsupported model family '{key}'. Supported: {sorted(MODEL_FAMILIES)}")
    return family


@dataclass
class ModelBundle:
    encoder: FeatureEncoder
    model: Any
    coefficients: pd.Series
    mode: PredictionMode
    family: str
    grain_col: str
    predicted_col: str
    positive_label: Any | None = None
    model_name: str = ""
    trained_at: str = ""

    @property
    def feature_names(self) -> list[str]:
        return list(self.encoder.feature_names)

    @property
    def algorithm(self) -> ModelFamily:
        return get_model_family(self.family)


def surrogate_coefficients(
    encoded: pd.DataFrame,
    y: pd.Series,
    mode: PredictionMode,
    positive_label: Any | None,
    seed: int,
) -> pd.Series:
    """Fit the linear surrogate and return its coefficients (intercept excluded)."""
    if mode is PredictionMode.CLASSIFICATION:
        surrogate = LogisticRegression(max_iter=1000, random_state=seed)
        surrogate.fit(encoded, y)
        coef = surrogate.coef_[0]
        # Binary coef_ is stated for classes_[1]; flip when the positive class is classes_[0].
        if resolve_positive_index(surrogate, positive_label) == 0:
            coef = -coef
    else:
        surrogate = LinearRegression()
        surrogate.fit(encoded, y)
        coef = np.asarray(surrogate.coef_).reshape(-1)
    return pd.Series(np.asarray(coef, dtype=float), index=list(encoded.columns), name="coefficient")


def fit_model_bundle(
    df: pd.DataFrame,
    *,
    mode: PredictionMode | str,
    grain_col: str,
    predicted_col: str,
    family: str = "random_forest",
    impute: bool = True,
    seed: int = 42,
    cores: int = 1,
    positive_label: Any | None = None,
    model_name: str | None = None,
) -> ModelBundle:
    parsed = PredictionMode.parse(mode)
    model_family = get_model_family(family)
    missing = [col for col in [grain_col, predicted_col] if col not in df.columns]
    if missing:
        raise ValueError(f"Missing required column(s): {missing}")

    model_df = df[df[predicted_col].notna()].reset_index(drop=True)
    x = model_df.drop(columns=[grain_col, predicted_col])
    if not impute:
        complete = x.notna().all(axis=1)
        if not bool(complete.all()):
            LOGGER.warning("Dropping %d row(s) with missing values (impute disabled)", int((~complete).sum()))
        model_df = model_df.loc[complete].reset_index(drop=True)
        x = x.loc[complete].reset_index(drop=True)

    y = model_df[predicted_col]
    if parsed is PredictionMode.REGRESSION:
        y = pd.to_numeric(y, errors="coerce")
        if bool(y.isna().any()):
            raise ValueError(f"Regression target '{predicted_col}' has non-numeric values.")
    elif int(y.nunique()) != 2:
        raise ValueError(f"Classification target '{predicted_col}' must have exactly two classes.")

    encoder = FeatureEncoder(impute=impute).fit(x)
    encoded = encoder.transform(x)

    model = model_family.build(parsed, seed, cores)
    model.fit(encoded, y)
    if parsed is PredictionMode.CLASSIFICATION:
        resolve_positive_index(model, positive_label)

    coefficients = surrogate_coefficients(encoded, y, parsed, positive_label, seed)
    return ModelBundle(
        encoder=encoder,
        model=model,
        coefficients=coefficients,
        mode=parsed,
        family=str(family).strip().lower(),
        grain_col=grain_col,
        predicted_col=predicted_col,
        positive_label=positive_label,
        model_name=model_name or f"{model_family.name}_{predicted_col}",
        trained_at=datetime.now().isoformat(timespec="seconds"),
    )


def save_bundle(bundle: ModelBundle, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    joblib.dump(bundle, path)


def load_bundle(path: Path) -> ModelBundle:
    if not path.exists():
        raise FileNotFoundError(f"Missing model bundle: {path}")
    bundle = joblib.load(path)
    if not isinstance(bundle, ModelBundle):
        raise ValueError(f"File does not contain a ModelBundle: {path}")
    return bundle


def parse_args() -> argparse.Namespace:
    root = project_root()
    parser = argparse.ArgumentParser(description="Fit the primary model and linear surrogate for deployment")
    parser.add_argument("--data-path", type=Path, default=None)
    parser.add_argument(
        "--out-path",
        type=Path,
        default=root / "outputs" / "model_bundle" / "model_bundle.joblib",
    )
    parser.add_argument("--type", type=str, default="classification", choices=["classification", "regression"])
    parser.add_argument("--grain-col", type=str, required=True)
    parser.add_argument("--predicted-col", type=str, required=True)
    parser.add_argument("--family", type=str, default="random_forest", choices=sorted(MODEL_FAMILIES))
    parser.add_argument("--positive-label", type=str, default=None)
    parser.add_argument("--model-name", type=str, default=None)
    parser.add_argument("--no-impute", action="store_true")
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--cores", type=int, default=1)
    return parser.parse_args()


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(message)s",
    )

    args = parse_args()
    data_path = resolve_data_path(args.data_path)

    LOGGER.info("Loading dataset from %s", data_path)
    df = load_dataset(data_path)

    LOGGER.info("Fitting %s bundle for %s", args.family, args.predicted_col)
    bundle = fit_model_bundle(
        df,
        mode=args.type,
        grain_col=args.grain_col,
        predicted_col=args.predicted_col,
        family=args.family,
        impute=not args.no_impute,
        seed=args.seed,
        cores=args.cores,
        positive_label=args.positive_label,
        model_name=args.model_name,
    )

    LOGGER.info("Saving bundle to %s", args.out_path)
    save_bundle(bundle, args.out_path)
    LOGGER.info("Encoded columns: %d | model: %s", len(bundle.feature_names), bundle.model_name)


if __name__ == "__main__":
    main()
