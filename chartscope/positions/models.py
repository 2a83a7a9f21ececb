"""Position data models — trading signals and the positions built on them."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from chartscope.patterns.scorer import AnalysisResult

# Position lifecycle
STATUS_PENDING = "pending"
STATUS_ACTIVE = "active"
STATUS_CLOSED = "closed"
STATUS_CANCELLED = "cancelled"
STATUSES = (STATUS_PENDING, STATUS_ACTIVE, STATUS_CLOSED, STATUS_CANCELLED)
OPEN_STATUSES = frozenset({STATUS_PENDING, STATUS_ACTIVE})

# Which level closed the position
TARGET_NONE = "none"
TARGET_TP1 = "tp1"
TARGET_TP2 = "tp2"
TARGET_SL = "sl"
TARGETS = (TARGET_NONE, TARGET_TP1, TARGET_TP2, TARGET_SL)
CLOSING_TARGETS = frozenset({TARGET_TP1, TARGET_TP2, TARGET_SL})
WINNING_TARGETS = frozenset({TARGET_TP1, TARGET_TP2})


@dataclass(frozen=True)
class TradingSignal:
    """Entry, exits and confidence of a directional trade idea."""

    direction: str  # "long" or "short"
    entry_price: float
    stop_loss: float
    take_profit_1: float
    take_profit_2: float
    risk_reward_ratio: float
    confidence: float  # 0-100


@dataclass
class TradingPosition:
    """A tracked trading intent; owned and mutated only by ``PositionStore``."""

    id: str
    crypto_id: str
    crypto_symbol: str
    crypto_name: str
    crypto_image: str
    signal: TradingSignal
    pattern_analysis: Optional[AnalysisResult] = None
    ai_analysis: Optional[str] = None
    status: str = STATUS_PENDING
    target_hit: str = TARGET_NONE
    notes: Optional[str] = None
    is_manually_edited: bool = False
    is_verified: bool = False
    added_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES


@dataclass(frozen=True)
class PositionStats:
    """Aggregate figures over every position in a store."""

    total_positions: int
    active_positions: int
    pending_positions: int
    win_rate: int
    avg_risk_reward: float


@dataclass(frozen=True)
class SignalStatus:
    """Where the current price sits relative to a position's levels."""

    status: str  # "waiting", "entry_zone", "tp1_hit", "tp2_hit" or "sl_hit"
    price_distance: float  # % from entry
