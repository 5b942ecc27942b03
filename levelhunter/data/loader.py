"""Load OHLCV candles from pandas DataFrames and CSV files."""

import logging
from pathlib import Path
from typing import List, Union

import pandas as pd

from levelhunter.core.candles import Candle
from levelhunter.errors import InvalidInputError

logger = logging.getLogger(__name__)

TIMESTAMP_COLUMNS = ["timestamp", "datetime", "date", "time"]
PRICE_COLUMNS = ["open", "high", "low", "close", "volume"]
EPOCH = pd.Timestamp("1970-01-01", tz="UTC")


def _to_unix_seconds(values: pd.Series) -> pd.Series:
    """Numeric columns are taken as Unix seconds; anything else is parsed as a date (UTC)."""
    if pd.api.types.is_numeric_dtype(values) and not pd.api.types.is_bool_dtype(values):
        return values.astype("int64")

    parsed = pd.to_datetime(values, utc=True)
    return (parsed - EPOCH) // pd.Timedelta(seconds=1)


def candles_from_dataframe(df: pd.DataFrame, symbol: str, timeframe: str) -> List[Candle]:
    """
    Convert an OHLCV DataFrame into candles sorted oldest first.

    Args:
        df: DataFrame with a timestamp/datetime/date column (or index) and
            open, high, low, close, volume columns (any case)
        symbol: Symbol stored on every candle
        timeframe: Timeframe stored on every candle

    Raises:
        InvalidInputError: missing columns or unparseable timestamps
    """
    if df.empty:
        return []

    # Normalize column names
    df = df.copy()
    df.columns = [str(col).lower() for col in df.columns]

    if df.index.name is not None and str(df.index.name).lower() in TIMESTAMP_COLUMNS:
        df.index.name = str(df.index.name).lower()
        df = df.reset_index()

    ts_col = next((col for col in TIMESTAMP_COLUMNS if col in df.columns), None)
    if ts_col is None:
        raise InvalidInputError(f"No timestamp column found, expected one of {TIMESTAMP_COLUMNS}")

    missing = [col for col in PRICE_COLUMNS if col not in df.columns]
    if missing:
        raise InvalidInputError(f"Missing OHLCV columns: {missing}")

    try:
        df["_ts"] = _to_unix_seconds(df[ts_col])
    except (ValueError, TypeError) as e:
        raise InvalidInputError(f"Unparseable timestamps in column '{ts_col}': {e}")

    df = df.sort_values("_ts", kind="stable")

    candles = [
        Candle(
            symbol=symbol,
            timeframe=timeframe,
            timestamp=int(row["_ts"]),
            open=float(row["open"]),
            high=float(row["high"]),
            low=float(row["low"]),
            close=float(row["close"]),
            volume=float(row["volume"]),
        )
        for _, row in df.iterrows()
    ]

    logger.debug(f"[Loader] {symbol} {timeframe}: {len(candles)} candles")
    return candles


def load_candles_csv(path: Union[str, Path], symbol: str, timeframe: str) -> List[Candle]:
    """
    Load candles from a CSV file.

    Raises:
        FileNotFoundError: the file does not exist
        InvalidInputError: missing columns or unparseable timestamps
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"CSV file not found: {path}")

    df = pd.read_csv(path)
    candles = candles_from_dataframe(df, symbol, timeframe)
    logger.info(f"[Loader] Loaded {len(candles)} candles from {path}")
    return candles
