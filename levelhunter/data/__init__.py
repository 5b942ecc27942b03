"""Candle loading for LevelHunter"""
from .loader import candles_from_dataframe, load_candles_csv

__all__ = [
    "candles_from_dataframe",
    "load_candles_csv",
]
