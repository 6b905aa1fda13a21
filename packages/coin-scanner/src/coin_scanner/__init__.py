"""
Coin Scanner package.

Ingestion layer for the music coin marketplace: a caching, rate-limited RPC
gateway and a block range scanner for factory CoinCreated events.
"""

from .config import ScannerConfig
from .gateway import GatewayService
from .ingestion import CoinIngestion
from .models import MusicCoin
from .scanner import BlockRangeScanner

__all__ = ["ScannerConfig", "GatewayService", "BlockRangeScanner", "CoinIngestion", "MusicCoin"]
__version__ = "0.1.0"
