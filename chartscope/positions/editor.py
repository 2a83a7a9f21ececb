"""Signal editing — build and hand-edit trading signals.

Edits recompute the risk/reward ratio and flag the position as manually
edited and verified.
"""

from dataclasses import replace
from typing import Optional

from chartscope.positions.models import TradingSignal
from chartscope.positions.status import calculate_risk_reward

_EDITABLE_FIELDS = ("entry_price", "stop_loss", "take_profit_1", "take_profit_2", "confidence")


def build_signal(
    direction: str,
    entry_price: float,
    stop_loss: float,
    take_profit_1: float,
    take_profit_2: float,
    confidence: float,
) -> TradingSignal:
    """Create a ``TradingSignal`` with its risk/reward ratio filled in.

    Raises:
        ValueError: if *direction* is not ``"long"`` or ``"short"``.
    """
    if direction not in ("long", "short"):
        raise ValueError(f"direction must be 'long' or 'short', got '{direction}'")
    return TradingSignal(
        direction=direction,
        entry_price=entry_price,
        stop_loss=stop_loss,
        take_profit_1=take_profit_1,
        take_profit_2=take_profit_2,
        risk_reward_ratio=calculate_risk_reward(entry_price, stop_loss, take_profit_1),
        confidence=confidence,
    )


def edit_signal(signal: TradingSignal, **changes: Optional[float]) -> TradingSignal:
    """Return *signal* with the given levels replaced and R:R recomputed.

    ``None`` values are ignored, so partial edits can be passed straight
    through from a request body.
    """
    unknown = set(changes) - set(_EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f"Cannot edit signal field(s): {', '.join(sorted(unknown))}")
    updated = replace(signal, **{k: v for k, v in changes.items() if v is not None})
    return replace(
        updated,
        risk_reward_ratio=calculate_risk_reward(
            updated.entry_price, updated.stop_loss, updated.take_profit_1,
        ),
    )


def apply_signal_edit(store, position_id: str, **changes: Optional[float]) -> bool:
    """Edit a stored position's signal and mark it edited and verified.

    Returns ``False`` if the position does not exist.
    """
    position = store.get_position(position_id)
    if position is None:
        return False
    return store.update_position_signal(
        position_id, edit_signal(position.signal, **changes), mark_edited=True,
    )
