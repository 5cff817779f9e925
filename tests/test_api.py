import pytest
from fastapi.testclient import TestClient

from conftest import linear_model, prices_from_returns
from cryptopredict.api.prediction_api import create_app
from cryptopredict.config import AppConfig, GARCHConfig
from cryptopredict.serving.engine import PredictionEngine


@pytest.fixture
def engine(cache, clock):
    return PredictionEngine(cache, config=AppConfig(garch=GARCHConfig(backend="native")), clock=clock)


@pytest.fixture
def client(engine):
    return TestClient(create_app(lambda: engine))


def test_health_reports_cache_and_registry(client, registry):
    registry.register(linear_model(), "BTC_price_prediction", version="1")
    response = client.get("/api/v1/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["registeredModels"] == 1


def test_predict_price(client, registry):
    registry.register(linear_model(1.0), "BTC_price_prediction", version="3")
    response = client.post(
        "/api/v1/predict",
        json={"symbol": "BTC-USD", "time_horizon": 3600, "features": {"close": 100.0}},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["model_version"] == "3"
    assert data["symbol"] == "BTC-USD"


def test_predict_without_model_is_404(client):
    response = client.post("/api/v1/predict", json={"symbol": "ZZZ", "time_horizon": 60, "features": {"close": 1.0}})
    assert response.status_code == 404


def test_pattern_and_missing_price_are_400(client):
    pattern = {"symbol": "BTC", "time_horizon": 60, "model_type": "pattern_recognition"}
    assert client.post("/api/v1/predict", json=pattern).status_code == 400
    no_price = {"symbol": "BTC", "time_horizon": 60, "features": {"rsi": 40.0}}
    assert client.post("/api/v1/predict", json=no_price).status_code == 400


def test_request_validation(client):
    assert client.post("/api/v1/predict", json={"symbol": "", "time_horizon": 60}).status_code == 422
    assert client.post("/api/v1/predict", json={"symbol": "BTC", "time_horizon": 0}).status_code == 422


def test_batch_preserves_order(client):
    payload = {
        "requests": [
            {"symbol": "BTC", "time_horizon": 60, "model_type": "trend_classification", "features": {"rsi": 80.0}},
            {"symbol": "ETH", "time_horizon": 60, "model_type": "trend_classification", "features": {"rsi": 20.0}},
        ]
    }
    response = client.post("/api/v1/predict/batch", json=payload)
    assert response.status_code == 200
    assert [item["symbol"] for item in response.json()] == ["BTC", "ETH"]
    assert [item["prediction"] for item in response.json()] == pytest.approx([0.18, -0.18])


def test_volatility_from_posted_prices(client, garch_returns):
    prices = prices_from_returns(garch_returns).tolist()
    response = client.post("/api/v1/volatility", json={"symbol": "BTC", "horizon_seconds": 3600, "prices": prices})
    assert response.status_code == 200
    assert len(response.json()["predictedVolatility"]) == 12

    short = client.post("/api/v1/volatility", json={"symbol": "BTC", "prices": prices[:20]})
    assert short.status_code == 400


def test_online_update_and_model_listing(client, registry, clock, feature_row):
    registry.register(linear_model(), "BTC_price_prediction", version="1")
    clock.advance(1)
    response = client.post("/api/v1/models/BTC/update", json={"batch": [feature_row], "targets": [[1.0]]})
    assert response.status_code == 200
    new_version = response.json()["version"]

    listing = client.get("/api/v1/models", params={"symbol": "BTC"}).json()
    assert [entry["version"] for entry in listing["versions"]] == [new_version, "1"]

    mismatched = client.post("/api/v1/models/BTC/update", json={"batch": [feature_row], "targets": [[1.0], [2.0]]})
    assert mismatched.status_code == 400
    unavailable = client.post("/api/v1/models/ZZZ/update", json={"batch": [feature_row], "targets": [[1.0]]})
    assert unavailable.status_code == 404
