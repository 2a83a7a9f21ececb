"""Position status math — pure functions, no I/O.

Price-based status evaluation, risk/reward calculation and the status
transition table.
"""

from typing import Optional

from chartscope.positions.models import (
    CLOSING_TARGETS,
    STATUS_ACTIVE,
    STATUS_CANCELLED,
    STATUS_CLOSED,
    STATUS_PENDING,
    TARGET_NONE,
    SignalStatus,
    TradingPosition,
)
from chartscope.rounding import round_half_up

# Half-width of the entry zone, in % of entry price
ENTRY_ZONE_PCT = 2.0

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    STATUS_PENDING: frozenset({STATUS_ACTIVE, STATUS_CANCELLED}),
    STATUS_ACTIVE: frozenset({STATUS_CLOSED}),
    STATUS_CLOSED: frozenset(),
    STATUS_CANCELLED: frozenset(),
}


def is_valid_transition(current: str, new: str, target_hit: Optional[str] = None) -> bool:
    """Return ``True`` if *current* → *new* follows the lifecycle.

    Closing requires a ``tp1``/``tp2``/``sl`` target, and only a close may
    carry one.  Re-applying the current status is allowed for ``pending``
    and ``active``; ``closed`` and ``cancelled`` are final.
    """
    if new == STATUS_CLOSED:
        if target_hit not in CLOSING_TARGETS:
            return False
    elif target_hit not in (None, TARGET_NONE):
        return False
    if current == new:
        return bool(ALLOWED_TRANSITIONS.get(current))
    return new in ALLOWED_TRANSITIONS.get(current, frozenset())


def calculate_risk_reward(entry_price: float, stop_loss: float, take_profit_1: float) -> float:
    """Reward to TP1 over risk to SL, rounded half-up to 2 dp.

    Returns ``1.0`` when the risk is zero.
    """
    risk = abs(entry_price - stop_loss)
    reward = abs(take_profit_1 - entry_price)
    if risk == 0:
        return 1.0
    return round_half_up(reward / risk, 2)


def check_signal_status(position: TradingPosition, current_price: float) -> SignalStatus:
    """Classify *current_price* against the position's levels.

    Take-profits are checked before the stop-loss (TP2 first), then the
    ±2% entry zone.  Short positions mirror every comparison.  A zero
    entry price has no meaningful distance: it reports ``0.0`` and never
    lands in the entry zone.
    """
    signal = position.signal
    entry = signal.entry_price
    if entry == 0:
        distance = 0.0
        in_zone = False
    else:
        distance = (current_price - entry) / entry * 100
        in_zone = abs(distance) <= ENTRY_ZONE_PCT

    if signal.direction == "long":
        if current_price >= signal.take_profit_2:
            status = "tp2_hit"
        elif current_price >= signal.take_profit_1:
            status = "tp1_hit"
        elif current_price <= signal.stop_loss:
            status = "sl_hit"
        elif in_zone:
            status = "entry_zone"
        else:
            status = "waiting"
    else:
        if current_price <= signal.take_profit_2:
            status = "tp2_hit"
        elif current_price <= signal.take_profit_1:
            status = "tp1_hit"
        elif current_price >= signal.stop_loss:
            status = "sl_hit"
        elif in_zone:
            status = "entry_zone"
        else:
            status = "waiting"

    return SignalStatus(status=status, price_distance=distance)
