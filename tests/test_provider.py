import pandas as pd
import pytest

from cryptopredict.data import PriceHistoryProvider


def _frame():
    index = pd.date_range("2024-01-01", periods=5, freq="5min", tz="UTC", name="datetime")
    return pd.DataFrame({"close": [1.0, 2.0, 3.0, 4.0, 5.0]}, index=index)


def test_cache_path_uses_normalized_symbol(tmp_path):
    provider = PriceHistoryProvider(tmp_path)
    assert provider.get_cache_path("btc-usd", "5min") == tmp_path.resolve() / "BTC" / "5min.csv"


def test_save_then_load_round_trip(tmp_path):
    provider = PriceHistoryProvider(tmp_path)
    provider.save_frame("ETH", "5min", _frame())

    frame = provider.load_frame("ETH", "5min")
    assert isinstance(frame.index, pd.DatetimeIndex)
    assert frame["close"].tolist() == [1.0, 2.0, 3.0, 4.0, 5.0]
    assert provider.load_closes("ETH", "5min", max_points=2).tolist() == [4.0, 5.0]


def test_missing_history_and_missing_close_are_rejected(tmp_path):
    provider = PriceHistoryProvider(tmp_path)
    with pytest.raises(ValueError):
        provider.load_frame("SOL", "1h")

    path = tmp_path / "bad.csv"
    pd.DataFrame({"open": [1.0]}).to_csv(path, index=False)
    with pytest.raises(ValueError):
        provider.load_frame("SOL", "1h", path=path)
