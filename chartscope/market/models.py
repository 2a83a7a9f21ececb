"""Market data models — typed representations of raw series samples."""

from dataclasses import dataclass


@dataclass(frozen=True)
class OHLCPoint:
    """A single candlestick bucket keyed by its start time (epoch ms)."""

    timestamp: int
    open: float
    high: float
    low: float
    close: float


@dataclass(frozen=True)
class PricePoint:
    """A single price sample (epoch ms)."""

    timestamp: int
    price: float


@dataclass(frozen=True)
class Subject:
    """Opaque metadata of the asset a position is opened on."""

    id: str
    symbol: str
    name: str
    image: str = ""
