from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from risk_advisor_ml.pipelines.encoding import FeatureEncoder
from risk_advisor_ml.pipelines.model_bundle import ModelBundle
from risk_advisor_ml.pipelines.prediction import PredictionEngine, PredictionMode

SBP_SCORES = {"Normal": 0.30, "Pre-hypertensive": 0.37, "Stage_1": 0.42}


class RiskStub:
    """Readmission probability driven by blood pressure level and A1C."""

    classes_ = np.array(["N", "Y"])

    def predict_proba(self, x: pd.DataFrame) -> np.ndarray:
        p = sum(score * x[f"SystolicBP_{level}"] for level, score in SBP_SCORES.items())
        p = p + 0.05 * (x["A1CNBR"] - 7.0)
        p = np.asarray(p, dtype=float)
        return np.column_stack([1.0 - p, p])


@pytest.fixture
def clinical_frame() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "PatientEncounterID": [954, 965, 996],
            "SystolicBP": ["Stage_1", "Normal", "Pre-hypertensive"],
            "A1CNBR": [7.0, 5.5, 8.0],
            "ThirtyDayReadmitFLG": ["Y", "N", "Y"],
        }
    )


@pytest.fixture
def fitted_encoder(clinical_frame: pd.DataFrame) -> FeatureEncoder:
    return FeatureEncoder().fit(clinical_frame[["SystolicBP", "A1CNBR"]])


@pytest.fixture
def stub_engine(fitted_encoder: FeatureEncoder) -> PredictionEngine:
    return PredictionEngine.from_model(RiskStub(), fitted_encoder.feature_names, PredictionMode.CLASSIFICATION)


@pytest.fixture
def stub_bundle(fitted_encoder: FeatureEncoder) -> ModelBundle:
    coefficients = pd.Series(
        [0.2, -1.0, 0.5, 1.5],
        index=["A1CNBR", "SystolicBP_Normal", "SystolicBP_Pre-hypertensive", "SystolicBP_Stage_1"],
    )
    return ModelBundle(
        encoder=fitted_encoder,
        model=RiskStub(),
        coefficients=coefficients,
        mode=PredictionMode.CLASSIFICATION,
        family="random_forest",
        grain_col="PatientEncounterID",
        predicted_col="ThirtyDayReadmitFLG",
        model_name="ReadmitRF",
    )
