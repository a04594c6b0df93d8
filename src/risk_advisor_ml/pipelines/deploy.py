"""
Score new records, rank contributing factors and recommend modifiable changes.

Run:
  python -m risk_advisor_ml.pipelines.deploy --grain-col PatientEncounterID \
      --predicted-col ThirtyDayReadmitFLG --recommend-config recommend.json

Outputs (under ./outputs/deploy):
  - deploy_output.csv
  - top_factors.csv
  - process_variables.csv (with --recommend-config)
  - top_factor_weights_<grain>.png (with --plot-records)
  - run_metadata.json
"""

from __future__ import annotations

import argparse
import logging
from collections.abc import Mapping, Sequence
from datetime import datetime
from functools import cached_property
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

from risk_advisor_ml.pipelines import output as out
from risk_advisor_ml.pipelines.common import load_dataset
from risk_advisor_ml.pipelines.config import DeploymentParams, RecommendationConfig, load_recommendation_config
from risk_advisor_ml.pipelines.errors import SchemaMismatch
from risk_advisor_ml.pipelines.model_bundle import ModelBundle, load_bundle
from risk_advisor_ml.pipelines.paths import project_root, resolve_data_path, resolve_model_path
from risk_advisor_ml.pipelines.prediction import PredictionEngine, PredictionMode
from risk_advisor_ml.pipelines.ranking import SurrogateImportanceRanker
from risk_advisor_ml.pipelines.recommend import recommend

LOGGER = logging.getLogger(__name__)


class Deployment:
    """Composed scoring pipeline: format_columns -> predict -> build_output.

    Inputs are fixed at construction; every derived table is a function of them.
    """

    def __init__(
        self,
        bundle: ModelBundle,
        df: pd.DataFrame,
        params: DeploymentParams | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.bundle = bundle
        self.params = params or DeploymentParams(
            type=bundle.mode.value,
            grain_col=bundle.grain_col,
            predicted_col=bundle.predicted_col,
        )
        self.logger = logger or LOGGER
        if self.params.debug:
            self.logger = self.logger.getChild("debug")
            self.logger.setLevel(logging.DEBUG)

        if PredictionMode.parse(self.params.type) is not bundle.mode:
            raise ValueError(f"Model bundle was trained for {bundle.mode.value}, not {self.params.type}.")
        if self.params.grain_col not in df.columns:
            raise SchemaMismatch(f"Grain column not found: {self.params.grain_col}")

        self.engine = PredictionEngine.from_model(
            bundle.model,
            bundle.feature_names,
            bundle.mode,
            positive_label=bundle.positive_label,
        )
        self.ranker = SurrogateImportanceRanker(bundle.coefficients)
        self.grain, self.encoded = self.format_columns(df)

    @property
    def mode(self) -> PredictionMode:
        return self.bundle.mode

    @property
    def model_name(self) -> str:
        return self.params.model_name or self.bundle.model_name or self.bundle.algorithm.name

    @property
    def imputes(self) -> bool:
        return self.params.impute and self.bundle.encoder.impute

    def drop_incomplete(self, frame: pd.DataFrame) -> pd.DataFrame:
        """Drop rows with missing model inputs when imputation is disabled."""
        if self.imputes:
            return frame.reset_index(drop=True)
        present = [c for c in self.bundle.encoder.input_cols if c in frame.columns]
        complete = frame[present].notna().all(axis=1)
        if not bool(complete.all()):
            self.logger.warning("Dropping %d row(s) with missing values (impute disabled)", int((~complete).sum()))
        return frame.loc[complete].reset_index(drop=True)

    def format_columns(self, df: pd.DataFrame) -> tuple[pd.Series, pd.DataFrame]:
        """Align raw columns with training levels and encode them."""
        encoder = self.bundle.encoder
        drop = {self.params.grain_col, self.params.predicted_col}
        extra = [c for c in df.columns if c not in drop and c not in set(encoder.input_cols)]
        if extra:
            self.logger.warning("Ignoring column(s) not used by the model: %s", extra)

        frame = self.drop_incomplete(df)
        grain = frame[self.params.grain_col]
        encoded = encoder.transform(frame)
        return grain, encoded

    def predict(self, encoded: pd.DataFrame) -> np.ndarray:
        return self.engine.predict(encoded)

    def perform_new_predictions(self, new_data: pd.DataFrame) -> np.ndarray:
        return self.predict(self.bundle.encoder.transform(self.drop_incomplete(new_data)))

    @cached_property
    def predictions(self) -> np.ndarray:
        preds = self.predict(self.encoded)
        self.logger.debug("Number of predictions: %d", len(preds))
        self.logger.debug("First 10 raw %s predictions: %s", self.mode.value, np.round(preds[:10], 2).tolist())
        bad = int((~np.isfinite(preds)).sum())
        if bad:
            self.logger.warning("%d prediction(s) are non-finite", bad)
        return preds

    @cached_property
    def ordered_factors(self) -> tuple[np.ndarray, np.ndarray]:
        self.logger.debug(
            "Surrogate coefficients (for ranking variable importance): %s",
            self.ranker.coefficients.to_dict(),
        )
        names, weights = self.ranker.ordered_factors(self.encoded)
        self.logger.debug("First ordered factors: %s", names[:10].tolist())
        return names, weights

    def build_output(self, num_factors: int = 3) -> pd.DataFrame:
        names, _ = self.ordered_factors
        table = out.build_factor_output(
            grain=self.grain,
            predictions=self.predictions,
            ordered_names=names,
            source_of=self.bundle.encoder.source_of,
            mode=self.mode,
            num_factors=num_factors,
        )
        return out.attach_metadata(table, model_name=self.model_name, generated_at=self.generated_at)

    @cached_property
    def generated_at(self) -> datetime:
        return datetime.now()

    @cached_property
    def out_df(self) -> pd.DataFrame:
        return self.build_output()

    def deploy(self) -> pd.DataFrame:
        self.logger.info("Deploying %s on %d record(s)", self.model_name, len(self.encoded))
        return self.out_df

    def get_out_df(self) -> pd.DataFrame:
        return self.out_df

    def get_top_factors(self, number_of_factors: int | None = None, include_weights: bool = False) -> pd.DataFrame:
        names, weights = self.ranker.top_factors(self.encoded, number_of_factors)
        return out.build_top_factor_output(self.grain, names, weights, include_weights=include_weights)

    def get_process_variables_df(
        self,
        modifiable_variables: Sequence[str],
        variable_levels: Mapping[str, Sequence[Any]] | None = None,
        grain_column_ids: Sequence[Any] | None = None,
        smaller_better: bool = True,
        repeated_factors: bool = False,
        num_top_factors: int = 3,
    ) -> pd.DataFrame:
        config = RecommendationConfig.build(
            modifiable_variables=modifiable_variables,
            variable_levels=variable_levels,
            grain_column_ids=grain_column_ids,
            smaller_better=smaller_better,
            repeated_factors=repeated_factors,
            num_top_factors=num_top_factors,
        )
        return self.recommend(config)

    def recommend(self, config: RecommendationConfig) -> pd.DataFrame:
        rows = recommend(
            self.engine,
            self.bundle.encoder,
            self.encoded,
            self.grain,
            config,
            n_jobs=self.params.cores,
            logger=self.logger,
        )
        return out.build_recommendation_output(
            grain_col=self.params.grain_col,
            rows=rows,
            mode=self.mode,
            num_top_factors=config.num_top_factors,
        )


def parse_args() -> argparse.Namespace:
    root = project_root()
    parser = argparse.ArgumentParser(description="Deploy a saved model: predictions, top factors, recommendations")
    parser.add_argument("--data-path", type=Path, default=None)
    parser.add_argument("--model-path", type=Path, default=None)
    parser.add_argument("--out-dir", type=Path, default=root / "outputs" / "deploy")
    parser.add_argument("--type", type=str, default=None, choices=["classification", "regression"])
    parser.add_argument("--grain-col", type=str, default=None)
    parser.add_argument("--predicted-col", type=str, default=None)
    parser.add_argument("--model-name", type=str, default=None)
    parser.add_argument("--no-impute", action="store_true")
    parser.add_argument("--debug", action="store_true")
    parser.add_argument("--cores", type=int, default=1)
    parser.add_argument("--num-factors", type=int, default=3)
    parser.add_argument("--recommend-config", type=Path, default=None)
    parser.add_argument("--plot-records", type=int, default=0)
    return parser.parse_args()


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(message)s",
    )

    args = parse_args()
    data_path = resolve_data_path(args.data_path)
    model_path = resolve_model_path(args.model_path)

    LOGGER.info("Loading model bundle from %s", model_path)
    bundle = load_bundle(model_path)
    LOGGER.info("Loading deployment data from %s", data_path)
    df = load_dataset(data_path)

    params = DeploymentParams(
        type=args.type or bundle.mode.value,
        grain_col=args.grain_col or bundle.grain_col,
        predicted_col=args.predicted_col or bundle.predicted_col,
        impute=not args.no_impute,
        debug=bool(args.debug),
        cores=args.cores,
        model_name=args.model_name,
    )
    deployment = Deployment(bundle, df, params)

    args.out_dir.mkdir(parents=True, exist_ok=True)
    out_df = deployment.build_output(num_factors=args.num_factors)
    out_df.to_csv(args.out_dir / "deploy_output.csv", index=False)

    top = deployment.get_top_factors(include_weights=True)
    top.to_csv(args.out_dir / "top_factors.csv", index=False)

    if args.recommend_config is not None:
        config = load_recommendation_config(args.recommend_config)
        LOGGER.info("Building recommendations for %s", list(config.modifiable_variables))
        deployment.recommend(config).to_csv(args.out_dir / "process_variables.csv", index=False)

    names, weights = deployment.ranker.top_factors(deployment.encoded, args.num_factors)
    for i in range(min(args.plot_records, len(deployment.grain))):
        grain_value = deployment.grain.iloc[i]
        out.save_top_factor_plot(
            grain_value,
            names[i],
            weights[i],
            args.out_dir / f"top_factor_weights_{grain_value}.png",
        )

    out.write_run_metadata(
        args.out_dir / "run_metadata.json",
        out_df,
        {
            "model_name": deployment.model_name,
            "algorithm": bundle.algorithm.name,
            "type": bundle.mode.value,
            "trained_at": bundle.trained_at,
            "generated_at": deployment.generated_at.isoformat(timespec="seconds"),
            "data_path": str(data_path),
            "model_path": str(model_path),
        },
    )
    LOGGER.info("Saved deployment artifacts to %s", args.out_dir)


if __name__ == "__main__":
    main()
