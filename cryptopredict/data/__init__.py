from cryptopredict.data.provider import PriceHistoryProvider

__all__ = ["PriceHistoryProvider"]
