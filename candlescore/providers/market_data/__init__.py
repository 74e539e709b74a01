from .base import CandleSource, candle_window, filter_symbols
from .hyperliquid import HyperliquidProvider

__all__ = ["CandleSource", "HyperliquidProvider", "candle_window", "filter_symbols"]
