#!/usr/bin/env python3
"""
Analyze support/resistance levels, liquidity grabs and confluence zones
for a CSV of OHLCV candles.

Usage:
    python scripts/analyze_levels.py <csv_path> [symbol] [timeframe] [--adjust]

The CSV needs a timestamp/datetime/date column plus open, high, low,
close, volume. Detector settings come from LEVELHUNTER_* variables
(see levelhunter/config.py). The JSON report is printed to stdout.
"""
import sys
import logging
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv
load_dotenv(project_root / ".env")

# Ensure logs directory exists
logs_dir = project_root / "logs"
logs_dir.mkdir(exist_ok=True)

# Configure logging (stderr, so stdout stays valid JSON)
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    handlers=[
        logging.FileHandler(logs_dir / 'analyze_levels.log'),
        logging.StreamHandler(sys.stderr)
    ]
)

logger = logging.getLogger(__name__)

from levelhunter.api.schemas import analysis_to_schema
from levelhunter.config import DetectorConfig
from levelhunter.core.detector import SupportResistanceDetector
from levelhunter.data.loader import load_candles_csv
from levelhunter.errors import LevelAnalysisError


def main():
    args = [arg for arg in sys.argv[1:] if not arg.startswith("--")]
    adjust = "--adjust" in sys.argv[1:]

    if not args:
        print(__doc__, file=sys.stderr)
        sys.exit(2)

    csv_path = Path(args[0])
    symbol = args[1] if len(args) > 1 else csv_path.stem
    timeframe = args[2] if len(args) > 2 else "1D"

    print("=" * 60, file=sys.stderr)
    print(f"  LEVELHUNTER ANALYSIS: {symbol} {timeframe}", file=sys.stderr)
    print("=" * 60, file=sys.stderr)

    try:
        config = DetectorConfig.from_env()
        candles = load_candles_csv(csv_path, symbol, timeframe)
        analysis = SupportResistanceDetector(config).analyze(candles, adjust=adjust)
    except FileNotFoundError as e:
        logger.error(f"[Analyze] {e}")
        sys.exit(1)
    except LevelAnalysisError as e:
        logger.error(f"[Analyze] {symbol}: {e}")
        sys.exit(1)

    print(analysis_to_schema(analysis).model_dump_json(indent=2))


if __name__ == "__main__":
    main()
