"""Errors raised by level analysis."""


class LevelAnalysisError(ValueError):
    """Base class for all level analysis errors."""


class InsufficientDataError(LevelAnalysisError):
    """Raised when the candle window is too short for the requested analysis."""

    def __init__(self, required: int, available: int, context: str = "analysis"):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient data for {context}: need at least {required} candles, got {available}"
        )


class InvalidInputError(LevelAnalysisError):
    """Raised when candles or configuration contain values that cannot be analyzed."""
