import json

import numpy as np
import pytest

from conftest import UnreadableModel, at, linear_model
from cryptopredict.errors import ChecksumMismatchError, ModelLoadError, ModelNotFoundError, ModelStoreError
from cryptopredict.models.mlp import MLPPricePredictionModel
from cryptopredict.models.registry import ModelMetadata, ModelRegistry
from cryptopredict.storage.model_store import ModelStore


def test_register_writes_named_artifact_with_checksum(registry, registry_root):
    entry = registry.register(linear_model(1.0), "BTC_price_prediction", version="1")

    assert entry.file_path == "BTC_price_prediction_v1.json"
    data = (registry_root / entry.file_path).read_bytes()
    assert entry.checksum == ModelStore.compute_checksum(data)
    assert entry.model_type == "cryptopredict.models.linear.LinearPriceModel"
    assert entry.created_at == at(100)


def test_index_survives_restart(registry, registry_root, clock):
    registry.register(linear_model(), "BTC_price_prediction", version="1")
    clock.advance(5)
    registry.register(linear_model(), "BTC_price_prediction", version="2")

    payload = json.loads((registry_root / "registry.json").read_text())
    assert [item["version"] for item in payload["BTC_price_prediction"]] == ["1", "2"]
    assert payload["BTC_price_prediction"][0]["createdAt"] == "2024-01-01T00:01:40Z"

    reopened = ModelRegistry.at_path(registry_root, clock=clock)
    assert [v.version for v in reopened.list_versions("BTC_price_prediction")] == ["2", "1"]
    assert reopened.get_latest_version("BTC_price_prediction").created_at == at(105)


def test_latest_version_is_max_created_at_not_insertion_order(registry, clock):
    clock.set(300)
    registry.register(linear_model(), "ETH_price_prediction", version="b")
    clock.set(200)
    registry.register(linear_model(), "ETH_price_prediction", version="a")

    assert registry.get_latest_version("ETH_price_prediction").version == "b"
    assert [v.version for v in registry.list_versions("ETH_price_prediction")] == ["b", "a"]


def test_equal_timestamps_break_ties_on_version(registry):
    registry.register(linear_model(), "SOL_price_prediction", version="b")
    registry.register(linear_model(), "SOL_price_prediction", version="a")
    assert registry.get_latest_version("SOL_price_prediction").version == "b"


def test_generated_versions_are_unique_and_ordered(registry, clock):
    first = registry.register(linear_model(), "ADA_price_prediction")
    second = registry.register(linear_model(), "ADA_price_prediction")
    clock.advance(1)
    third = registry.register(linear_model(), "ADA_price_prediction")

    assert first.version == "20240101T000140000000Z"
    assert second.version == "20240101T000140000000Z.001"
    assert len({first.file_path, second.file_path, third.file_path}) == 3
    assert registry.get_latest_version("ADA_price_prediction") == third


def test_duplicate_explicit_version_is_rejected(registry):
    registry.register(linear_model(), "BTC_price_prediction", version="1")
    with pytest.raises(ValueError):
        registry.register(linear_model(), "BTC_price_prediction", version="1")


def test_get_version_and_unknown_ids(registry):
    registry.register(linear_model(), "BTC_price_prediction", version="1")
    assert registry.get_version("BTC_price_prediction", "1").version == "1"
    assert registry.get_version("BTC_price_prediction", "2") is None
    assert registry.get_latest_version("NOPE") is None
    assert registry.list_versions("NOPE") == []


def test_load_model_round_trips_predictions(registry, feature_row):
    model = linear_model(3.0)
    registry.register(model, "BTC_price_prediction", version="1")
    loaded = registry.load_model("BTC_price_prediction")
    assert np.allclose(loaded.predict([feature_row]), model.predict([feature_row]), atol=1e-2)


def test_load_unknown_version_raises_not_found(registry):
    with pytest.raises(ModelNotFoundError):
        registry.load_model("X", "v9")
    registry.register(linear_model(), "X", version="v1")
    with pytest.raises(ModelNotFoundError):
        registry.load_model("X", "v9")


def test_corrupted_artifact_raises_checksum_mismatch(registry, registry_root):
    entry = registry.register(linear_model(), "BTC_price_prediction", version="1")
    path = registry_root / entry.file_path
    data = bytearray(path.read_bytes())
    data[len(data) // 2] ^= 0x01
    path.write_bytes(bytes(data))

    with pytest.raises(ChecksumMismatchError):
        registry.load_model("BTC_price_prediction", "1")


def test_index_entry_without_file_loads_as_not_found(registry, registry_root):
    entry = registry.register(linear_model(), "BTC_price_prediction", version="1")
    (registry_root / entry.file_path).unlink()
    with pytest.raises(ModelNotFoundError):
        registry.load_model("BTC_price_prediction")


def test_delete_version_removes_file_and_empty_model_id(registry, registry_root):
    first = registry.register(linear_model(), "BTC_price_prediction", version="1")
    second = registry.register(linear_model(), "BTC_price_prediction", version="2")

    registry.delete_version("BTC_price_prediction", "1")
    assert not (registry_root / first.file_path).exists()
    assert [v.version for v in registry.list_versions("BTC_price_prediction")] == ["2"]

    registry.delete_version("BTC_price_prediction", "2")
    assert not (registry_root / second.file_path).exists()
    assert "BTC_price_prediction" not in registry.model_ids()
    with pytest.raises(ModelNotFoundError):
        registry.delete_version("BTC_price_prediction", "2")


def test_delete_models_removes_every_version_for_asset(registry, registry_root, clock):
    v1 = registry.register(linear_model(), "BTC_price_prediction", version="1")
    clock.set(200)
    v2 = registry.register(linear_model(), "BTC_price_prediction", version="2")
    registry.register(linear_model(), "ETH_price_prediction", version="1")

    assert registry.delete_models("BTC") == 1
    assert registry.list_models("BTC") == []
    assert not (registry_root / v1.file_path).exists()
    assert not (registry_root / v2.file_path).exists()
    assert [v.model_id for v in registry.list_models("ETH")] == ["ETH_price_prediction"]


def test_list_models_matches_asset_prefix_only(registry, clock):
    registry.register(linear_model(), "BTC_price_prediction", version="1")
    clock.advance(1)
    registry.register(linear_model(), "BTC_volatility", version="1")
    registry.register(linear_model(), "BTCX_price_prediction", version="1")

    listed = registry.list_models("btc-usd")
    assert [v.model_id for v in listed] == ["BTC_volatility", "BTC_price_prediction"]


def test_metadata_is_flattened_to_strings(registry):
    metadata = ModelMetadata(
        architecture="LinearPriceModel",
        input_size=18,
        output_size=1,
        training_epochs=10,
        final_loss=0.5,
        hyperparameters={"learning_rate": "0.001"},
    )
    entry = registry.register(linear_model(), "BTC_price_prediction", metadata=metadata)
    assert entry.metadata["architecture"] == "LinearPriceModel"
    assert entry.metadata["inputSize"] == "18"
    assert entry.metadata["validationLoss"] == ""
    assert entry.metadata["hp.learning_rate"] == "0.001"


def test_verify_reports_missing_and_orphaned_files(registry, registry_root):
    entry = registry.register(linear_model(), "BTC_price_prediction", version="1")
    assert registry.verify().consistent

    (registry_root / entry.file_path).unlink()
    (registry_root / "stray_v1.json").write_text("{}")
    report = registry.verify()
    assert [v.version for v in report.missing_artifacts] == ["1"]
    assert report.orphaned_files == ["stray_v1.json"]
    assert not report.consistent


def test_malformed_index_is_rejected(registry_root):
    registry_root.mkdir(parents=True)
    (registry_root / "registry.json").write_text("{not json")
    with pytest.raises(ValueError):
        ModelRegistry.at_path(registry_root)


def _bias(model):
    return float(np.asarray(model.bias).ravel()[0])


@pytest.mark.parametrize(
    "first, second",
    [
        (("X", "1"), ("X", "1.")),
        (("BTC/USD_price", "1"), ("BTC_USD_price", "1")),
    ],
)
def test_colliding_artifact_names_get_distinct_files(registry, registry_root, first, second):
    a = registry.register(linear_model(1.0), first[0], version=first[1])
    b = registry.register(linear_model(2.0), second[0], version=second[1])

    assert a.file_path != b.file_path
    assert sorted(path.name for path in registry_root.glob("*.json") if path.name != "registry.json") == sorted(
        [a.file_path, b.file_path]
    )
    assert _bias(registry.load_model(*first)) == 1.0
    assert _bias(registry.load_model(*second)) == 2.0

    registry.delete_version(*second)
    assert _bias(registry.load_model(*first)) == 1.0


def test_undeserializable_artifact_raises_load_error(registry):
    model = UnreadableModel()
    model.weights = linear_model().weights
    model.bias = np.array([0.0])
    registry.register(model, "BTC_price_prediction", version="1")

    with pytest.raises(ModelLoadError) as excinfo:
        registry.load_model("BTC_price_prediction")
    assert excinfo.value.version == "1"
    assert isinstance(excinfo.value.__cause__, ValueError)


def test_load_uses_the_verified_bytes(registry, registry_root, monkeypatch):
    entry = registry.register(linear_model(1.0), "BTC_price_prediction", version="1")
    path = registry_root / entry.file_path
    replacement = json.loads(path.read_text())
    replacement["bias"] = [9.0]
    original_read = registry.store.read

    def read_then_rewrite(name):
        data = original_read(name)
        if name == entry.file_path:
            path.write_text(json.dumps(replacement))
        return data

    monkeypatch.setattr(registry.store, "read", read_then_rewrite)
    assert _bias(registry.load_model("BTC_price_prediction")) == 1.0


def test_failed_index_save_leaves_no_entry(registry, registry_root, monkeypatch):
    registry.register(linear_model(), "BTC_price_prediction", version="1")

    def failing_write(name, data):
        raise ModelStoreError(f"disk full writing {name}")

    monkeypatch.setattr(registry.store, "write", failing_write)
    with pytest.raises(ModelStoreError):
        registry.register(linear_model(), "BTC_price_prediction", version="2")
    with pytest.raises(ModelStoreError):
        registry.register(linear_model(), "ETH_price_prediction", version="1")

    assert [v.version for v in registry.list_versions("BTC_price_prediction")] == ["1"]
    assert registry.model_ids() == ["BTC_price_prediction"]
    monkeypatch.undo()
    reopened = ModelRegistry.at_path(registry_root)
    assert reopened.model_ids() == ["BTC_price_prediction"]


def test_mlp_round_trips_through_registry(registry, feature_row):
    rng = np.random.default_rng(3)
    inputs = rng.normal(size=(32, 18))
    targets = inputs.sum(axis=1, keepdims=True)
    model = MLPPricePredictionModel(device="cpu")
    model.fit_normalization(inputs)
    model.train(inputs, targets, epochs=3, learning_rate=1e-2)

    entry = registry.register(model, "BTC_price_prediction", version="1")
    assert entry.file_path == "BTC_price_prediction_v1.pt"
    assert entry.model_type == "cryptopredict.models.mlp.MLPPricePredictionModel"

    loaded = registry.load_model("BTC_price_prediction", "1")
    assert isinstance(loaded, MLPPricePredictionModel)
    np.testing.assert_allclose(loaded.predict([feature_row]), model.predict([feature_row]), atol=1e-4)
