from __future__ import annotations

import json
from datetime import datetime

import numpy as np
import pandas as pd

from risk_advisor_ml.pipelines import output as out
from risk_advisor_ml.pipelines.prediction import PredictionMode
from risk_advisor_ml.pipelines.recommend import Candidate, RecommendationRow


def test_collapse_to_source_drops_consecutive_repeats_only() -> None:
    source_of = {"bp_Normal": "bp", "bp_High": "bp", "a1c": "a1c"}
    assert out.collapse_to_source(["bp_High", "bp_Normal", "a1c"], source_of) == ["bp", "a1c"]
    assert out.collapse_to_source(["bp_High", "a1c", "bp_Normal"], source_of) == ["bp", "a1c", "bp"]


def test_column_names_follow_output_layout() -> None:
    assert out.prediction_column(PredictionMode.CLASSIFICATION) == "PredictedProbNBR"
    assert out.prediction_column(PredictionMode.REGRESSION) == "PredictedValueNBR"
    assert out.factor_columns(2) == ["Factor1TXT", "Factor2TXT"]
    assert out.recommendation_columns(1) == [
        "Modify1TXT",
        "Modify1CurrentValue",
        "Modify1Value",
        "Modify1DeltaNBR",
        "Modify1DesirabilityNBR",
    ]


def test_factor_output_pads_short_rankings_and_flags_non_finite_scores() -> None:
    grain = pd.Series([1, 2], name="ID")
    ordered = np.array([["bp_High", "bp_Normal", "a1c"], ["a1c", "bp_High", "bp_Normal"]], dtype=object)
    table = out.build_factor_output(
        grain,
        np.array([0.4, np.nan]),
        ordered,
        {"bp_Normal": "bp", "bp_High": "bp", "a1c": "a1c"},
        PredictionMode.CLASSIFICATION,
        num_factors=3,
    )

    assert list(table.columns) == [
        "ID",
        "PredictedProbNBR",
        "Factor1TXT",
        "Factor2TXT",
        "Factor3TXT",
        out.ISSUE_COL,
    ]
    assert table.loc[0, ["Factor1TXT", "Factor2TXT"]].tolist() == ["bp", "a1c"]
    assert pd.isna(table.loc[0, "Factor3TXT"])
    assert table.loc[1, ["Factor1TXT", "Factor2TXT"]].tolist() == ["a1c", "bp"]
    assert pd.isna(table.loc[0, out.ISSUE_COL])
    assert table.loc[1, out.ISSUE_COL] == "non-finite prediction"


def test_top_factor_output_interleaves_weights() -> None:
    grain = pd.Series([7], name="ID")
    table = out.build_top_factor_output(
        grain,
        np.array([["x", "y"]], dtype=object),
        np.array([[0.9, -0.1]]),
        include_weights=True,
    )
    assert list(table.columns) == ["ID", "Factor1TXT", "Factor1WT", "Factor2TXT", "Factor2WT"]
    assert table.loc[0, "Factor2WT"] == -0.1

    plain = out.build_top_factor_output(grain, np.array([["x", "y"]], dtype=object), np.array([[0.9, -0.1]]))
    assert list(plain.columns) == ["ID", "Factor1TXT", "Factor2TXT"]


def test_recommendation_output_has_fixed_width_and_issue_column() -> None:
    slot = Candidate("bp", "Normal", "High", 0.3, -0.1, 0.1, 0, 0)
    rows = [
        RecommendationRow(grain=1, baseline=0.4, slots=(slot, None)),
        RecommendationRow(grain=2, baseline=float("nan"), slots=(None, None), issues=("a", "b")),
    ]
    table = out.build_recommendation_output("ID", rows, PredictionMode.CLASSIFICATION, num_top_factors=2)

    assert list(table.columns) == ["ID", "PredictedProbNBR", *out.recommendation_columns(2), out.ISSUE_COL]
    assert table.loc[0, "Modify1TXT"] == "bp"
    assert table.loc[0, "Modify1CurrentValue"] == "High"
    assert table.loc[0, "Modify1Value"] == "Normal"
    assert table.loc[0, "Modify1DeltaNBR"] == -0.1
    assert pd.isna(table.loc[0, "Modify2TXT"])
    assert pd.isna(table.loc[0, out.ISSUE_COL])
    assert table.loc[1, out.ISSUE_COL] == "a; b"


def test_attach_metadata_prepends_binding_columns() -> None:
    df = pd.DataFrame({"ID": [1, 2], "PredictedProbNBR": [0.1, 0.2]})
    stamp = datetime(2024, 1, 2, 3, 4, 5)
    table = out.attach_metadata(df, model_name="ReadmitRF", generated_at=stamp)

    assert list(table.columns[:3]) == ["BindingID", "BindingNM", "LastLoadDTS"]
    assert table["BindingID"].tolist() == [0, 0]
    assert table["BindingNM"].tolist() == ["ReadmitRF", "ReadmitRF"]
    assert (table["LastLoadDTS"] == pd.Timestamp(stamp)).all()
    assert list(df.columns) == ["ID", "PredictedProbNBR"]


def test_write_run_metadata_and_plot(tmp_path) -> None:
    df = pd.DataFrame({"ID": [1], "PredictedProbNBR": [0.5]})
    meta_path = tmp_path / "meta" / "run_metadata.json"
    out.write_run_metadata(meta_path, df, {"model_name": "m", "generated_at": datetime(2024, 1, 1)})

    payload = json.loads(meta_path.read_text(encoding="utf-8"))
    assert payload["n_rows"] == 1
    assert payload["columns"] == ["ID", "PredictedProbNBR"]
    assert payload["generated_at"].startswith("2024-01-01")

    plot_path = tmp_path / "top_factor_weights_1.png"
    out.save_top_factor_plot(1, ["a", "b"], [0.5, -0.2], plot_path)
    assert plot_path.exists()
