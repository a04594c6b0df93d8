from __future__ import annotations

import numpy as np
import pytest

from risk_advisor_ml.pipelines import common, paths


def test_clean_columns_trims_and_compacts_double_spaces() -> None:
    cols = ["  A  ", "B", "C   D"]
    assert common.clean_columns(cols) == ["A", "B", "C D"]


def test_dedupe_keep_order() -> None:
    assert common.dedupe_keep_order(["b", "a", "b", "c", "a"]) == ["b", "a", "c"]


def test_values_equal_handles_types_and_missing() -> None:
    assert common.values_equal(954, "954")
    assert common.values_equal(5.0, 5)
    assert common.values_equal(np.nan, None)
    assert common.values_equal("Normal", "Normal")
    assert not common.values_equal("Normal", "Stage_1")
    assert not common.values_equal(1, np.nan)


def test_load_dataset_treats_null_tokens_as_missing(tmp_path) -> None:
    path = tmp_path / "records.csv"
    path.write_text(" PatientEncounterID ,A1CNBR\n1,NULL\n2,6.5\n", encoding="utf-8")
    df = common.load_dataset(path)

    assert list(df.columns) == ["PatientEncounterID", "A1CNBR"]
    assert df["A1CNBR"].isna().tolist() == [True, False]

    with pytest.raises(FileNotFoundError):
        common.load_dataset(tmp_path / "missing.csv")


def test_default_paths_point_to_project_layout() -> None:
    assert paths.DEFAULT_MODEL_PATH.as_posix().endswith("outputs/model_bundle/model_bundle.joblib")
    assert all(p.name == "deploy_records.csv" for p in paths.DEFAULT_DATA_CANDIDATES)
