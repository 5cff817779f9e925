import json

import numpy as np
import pandas as pd
import pytest

from conftest import prices_from_returns, simulate_garch
from cryptopredict.main import main


@pytest.fixture(autouse=True)
def _no_remote_mirror(monkeypatch):
    monkeypatch.delenv("CRYPTOPREDICT_MODEL_BUCKET", raising=False)


@pytest.fixture
def model_dir(tmp_path):
    return str(tmp_path / "models")


@pytest.fixture
def history_csv(tmp_path):
    closes = prices_from_returns(simulate_garch(200, omega=1e-4, alpha=0.1, beta=0.85))
    frame = pd.DataFrame(
        {
            "datetime": pd.date_range("2024-01-01", periods=closes.size, freq="5min", tz="UTC"),
            "close": closes,
            "high": closes * 1.002,
            "low": closes * 0.998,
            "volume": np.linspace(10.0, 20.0, closes.size),
        }
    )
    path = tmp_path / "eth.csv"
    frame.to_csv(path, index=False)
    return str(path)


def _run(capsys, *argv):
    code = main(list(argv))
    return code, json.loads(capsys.readouterr().out)


def test_volatility_command_forecasts_from_csv(capsys, model_dir, history_csv):
    code, payload = _run(
        capsys, "--model-dir", model_dir, "volatility", "--symbol", "ETH", "--csv", history_csv, "--horizon", "3600"
    )
    assert code == 0
    assert len(payload["predictedVolatility"]) == 12
    assert payload["modelType"] == "GARCH(1,1)"
    assert 0.0 <= payload["confidence"] <= 1.0


def test_train_then_predict_serves_trained_version(capsys, model_dir, history_csv):
    code, trained = _run(
        capsys,
        "--model-dir", model_dir,
        "train", "--symbol", "ETH", "--csv", history_csv, "--model", "linear", "--epochs", "10", "--no-progress",
    )
    assert code == 0
    assert trained["modelId"] == "ETH_price_prediction"

    code, response = _run(
        capsys, "--model-dir", model_dir, "predict", "--symbol", "eth-usd", "-f", "close=100", "-f", "volatility=0.01"
    )
    assert code == 0
    assert response["modelVersion"] == trained["version"]

    code, warm = _run(capsys, "--model-dir", model_dir, "warmup", "--symbols", "ETH", "SOL")
    assert warm["sources"] == {"ETH": "registry", "SOL": "none"}


def test_registry_commands(capsys, model_dir, history_csv, tmp_path):
    _run(capsys, "--model-dir", model_dir, "train", "--symbol", "ETH", "--csv", history_csv, "--epochs", "10", "--no-progress")

    code, listing = _run(capsys, "--model-dir", model_dir, "registry", "list", "--symbol", "ETH")
    assert code == 0
    assert [entry["modelId"] for entry in listing["versions"]] == ["ETH_price_prediction"]

    code, report = _run(capsys, "--model-dir", model_dir, "registry", "verify")
    assert code == 0
    assert report["consistent"] is True

    (tmp_path / "models" / "stray_v1.pt").write_bytes(b"x")
    code, report = _run(capsys, "--model-dir", model_dir, "registry", "verify")
    assert code == 1
    assert report["orphanedFiles"] == ["stray_v1.pt"]

    code, deleted = _run(capsys, "--model-dir", model_dir, "registry", "delete", "--symbol", "ETH")
    assert deleted == {"symbol": "ETH", "deletedModelIds": 1}
    code, listing = _run(capsys, "--model-dir", model_dir, "registry", "list")
    assert listing["versions"] == []


def test_trend_prediction_needs_no_model(capsys, model_dir):
    code, response = _run(
        capsys, "--model-dir", model_dir, "predict", "--symbol", "BTC", "--kind", "trend_classification", "-f", "rsi=80"
    )
    assert code == 0
    assert response["prediction"] == pytest.approx(0.18)
    assert response["modelVersion"] == "heuristic_fallback"


def test_malformed_feature_is_rejected(model_dir):
    with pytest.raises(SystemExit):
        main(["--model-dir", model_dir, "predict", "--symbol", "BTC", "-f", "rsi"])
