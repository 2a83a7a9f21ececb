"""Position store — owns the trading positions of one user context.

The store is the only writer of position state.  Every mutation persists
(when a repo is attached), then notifies subscribers exactly once with a
snapshot of the full position list.  A failed repo write leaves memory
unchanged and raises ``PersistenceError``.  Lookups on unknown ids return
``False`` / ``None`` and never notify.
"""

import asyncio
import copy
import logging
import time
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Optional

from chartscope.market.models import Subject
from chartscope.patterns.scorer import AnalysisResult
from chartscope.positions.models import (
    STATUS_ACTIVE,
    STATUS_CLOSED,
    STATUS_PENDING,
    STATUSES,
    TARGETS,
    WINNING_TARGETS,
    PositionStats,
    SignalStatus,
    TradingPosition,
    TradingSignal,
)
from chartscope.positions.status import (
    calculate_risk_reward,
    check_signal_status,
    is_valid_transition,
)
from chartscope.rounding import round_half_up

logger = logging.getLogger("chartscope")

Subscriber = Callable[[list[TradingPosition]], None]


class PersistenceError(Exception):
    """The position repo failed to store a change."""


def _new_position_id() -> str:
    return f"pos_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class PositionStore:
    """In-memory position set for the current user, with optional persistence.

    Args:
        repo: A ``PositionRepo`` (or duck-type) used to load and persist
            positions for the current user.  ``None`` keeps positions in
            memory only.
        user_id: Initial user context; positions are loaded immediately.
        enforce_transitions: Reject status updates that break the
            lifecycle (``pending → active → closed``, ``pending → cancelled``).
            When ``False`` any status overwrite is accepted and logged.
    """

    def __init__(
        self,
        repo=None,
        user_id: Optional[str] = None,
        enforce_transitions: bool = True,
    ) -> None:
        self._repo = repo
        self._enforce_transitions = enforce_transitions
        self._positions: list[TradingPosition] = []
        self._subscribers: list[Subscriber] = []
        self._user_id: Optional[str] = None
        self._context_token = 0
        if user_id is not None:
            self.set_current_user(user_id)

    @property
    def current_user(self) -> Optional[str]:
        return self._user_id

    # ── User context ─────────────────────────────────────────────────────

    def set_current_user(self, user_id: Optional[str]) -> None:
        """Switch user context: drop in-memory positions and reload."""
        self._context_token += 1
        self._user_id = user_id
        self._positions = self._load(user_id)
        logger.info("Loaded %d position(s) for user %s", len(self._positions), user_id)
        self._notify()

    async def load_current_user_async(self, user_id: Optional[str]) -> bool:
        """Switch user context, loading positions off the event loop.

        Returns ``False`` if another context switch happened while the load
        was in flight; the stale result is discarded.
        """
        self._context_token += 1
        token = self._context_token
        self._user_id = user_id
        self._positions = []

        positions = await asyncio.to_thread(self._load, user_id)

        if token != self._context_token:
            logger.info("Discarding stale position load for user %s", user_id)
            return False
        self._positions = positions
        logger.info("Loaded %d position(s) for user %s", len(positions), user_id)
        self._notify()
        return True

    def _load(self, user_id: Optional[str]) -> list[TradingPosition]:
        if self._repo is None or user_id is None:
            return []
        return self._repo.list_for_user(user_id)

    # ── Subscriptions ────────────────────────────────────────────────────

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register *callback*; it is called at once with the current list.

        Returns a function that unregisters the callback.
        """
        self._subscribers.append(callback)
        callback(self.get_all_positions())

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            try:
                callback(self.get_all_positions())
            except Exception:
                logger.exception("Position subscriber raised")

    def _write(self, action: str, operation: Callable[..., None], *args) -> None:
        """Run a repo write for the current user, before memory changes.

        Raises:
            PersistenceError: if the repo fails; in-memory state is untouched.
        """
        if self._repo is None or self._user_id is None:
            return
        try:
            operation(*args)
        except Exception as exc:
            logger.exception("Failed to %s for user %s", action, self._user_id)
            raise PersistenceError(f"Could not {action}: {exc}") from exc

    def _persist(self, position: TradingPosition) -> None:
        if self._repo is not None:
            self._write(f"save position {position.id}", self._repo.upsert, self._user_id, position)

    def _commit(self, index: int, updated: TradingPosition) -> None:
        self._persist(updated)
        self._positions[index] = updated

    # ── Mutations ────────────────────────────────────────────────────────

    def add_position(
        self,
        subject: Subject,
        signal: TradingSignal,
        pattern_analysis: Optional[AnalysisResult] = None,
        ai_analysis: Optional[str] = None,
    ) -> TradingPosition:
        """Create a ``pending`` position from *signal* and return a snapshot.

        Raises:
            PersistenceError: if the attached repo cannot store it.
        """
        position = TradingPosition(
            id=_new_position_id(),
            crypto_id=subject.id,
            crypto_symbol=subject.symbol,
            crypto_name=subject.name,
            crypto_image=subject.image,
            signal=signal,
            pattern_analysis=pattern_analysis,
            ai_analysis=ai_analysis,
            added_at=datetime.now(timezone.utc),
        )
        self._persist(position)
        self._positions.insert(0, position)
        logger.info(
            "Added %s position %s on %s @ %s",
            signal.direction, position.id, subject.symbol, signal.entry_price,
        )
        self._notify()
        return copy.deepcopy(position)

    def remove_position(self, position_id: str) -> bool:
        index = self._index(position_id)
        if index is None:
            return False
        if self._repo is not None:
            self._write(f"delete position {position_id}", self._repo.delete, position_id)
        del self._positions[index]
        logger.info("Removed position %s", position_id)
        self._notify()
        return True

    def update_position_status(
        self,
        position_id: str,
        status: str,
        target_hit: Optional[str] = None,
    ) -> bool:
        """Move a position to *status*, optionally tagging the level hit.

        Closing needs *target_hit* (``tp1``, ``tp2`` or ``sl``).  Returns
        ``False`` for an unknown id, or for an illegal transition when
        transitions are enforced.

        Raises:
            ValueError: if *status* or *target_hit* is not a known value.
            PersistenceError: if the attached repo cannot store the change.
        """
        if status not in STATUSES:
            raise ValueError(f"status must be one of {STATUSES}, got '{status}'")
        if target_hit is not None and target_hit not in TARGETS:
            raise ValueError(f"target_hit must be one of {TARGETS}, got '{target_hit}'")

        index = self._index(position_id)
        if index is None:
            return False
        position = self._positions[index]

        if not is_valid_transition(position.status, status, target_hit):
            if self._enforce_transitions:
                logger.warning(
                    "Rejected status change %s → %s (target: %s) for position %s",
                    position.status, status, target_hit, position_id,
                )
                return False
            logger.warning(
                "Overriding lifecycle: %s → %s for position %s",
                position.status, status, position_id,
            )

        updated = replace(
            position,
            status=status,
            target_hit=target_hit if target_hit else position.target_hit,
        )
        self._commit(index, updated)
        logger.info("Position %s is now %s (target: %s)", position_id, status, updated.target_hit)
        self._notify()
        return True

    def update_position_notes(self, position_id: str, notes: str) -> bool:
        index = self._index(position_id)
        if index is None:
            return False
        self._commit(index, replace(self._positions[index], notes=notes))
        self._notify()
        return True

    def update_position_signal(
        self,
        position_id: str,
        signal: TradingSignal,
        mark_edited: bool = False,
    ) -> bool:
        """Replace a position's signal, recomputing its risk/reward ratio.

        Args:
            position_id: Target position.
            signal: New signal levels.
            mark_edited: Also flag the position as manually edited and
                verified (set by the signal editor).
        """
        index = self._index(position_id)
        if index is None:
            return False
        position = self._positions[index]
        changes = {
            "signal": replace(
                signal,
                risk_reward_ratio=calculate_risk_reward(
                    signal.entry_price, signal.stop_loss, signal.take_profit_1,
                ),
            ),
        }
        if mark_edited:
            changes["is_manually_edited"] = True
            changes["is_verified"] = True
        self._commit(index, replace(position, **changes))
        self._notify()
        return True

    def clear_all_positions(self) -> None:
        if self._repo is not None:
            self._write("clear positions", self._repo.delete_all, self._user_id)
        self._positions = []
        logger.info("Cleared all positions for user %s", self._user_id)
        self._notify()

    # ── Queries ──────────────────────────────────────────────────────────

    def _index(self, position_id: str) -> Optional[int]:
        for i, position in enumerate(self._positions):
            if position.id == position_id:
                return i
        return None

    def _find(self, position_id: str) -> Optional[TradingPosition]:
        index = self._index(position_id)
        return self._positions[index] if index is not None else None

    def get_position(self, position_id: str) -> Optional[TradingPosition]:
        position = self._find(position_id)
        return copy.deepcopy(position) if position is not None else None

    def get_all_positions(self) -> list[TradingPosition]:
        """Return snapshot copies of every position, newest first."""
        return copy.deepcopy(self._positions)

    def get_positions_by_subject(self, subject_id: str) -> list[TradingPosition]:
        return [copy.deepcopy(p) for p in self._positions if p.crypto_id == subject_id]

    def has_position(self, subject_id: str) -> bool:
        """``True`` if *subject_id* has a pending or active position."""
        return any(p.crypto_id == subject_id and p.is_open for p in self._positions)

    def get_stats(self) -> PositionStats:
        total = len(self._positions)
        active = sum(1 for p in self._positions if p.status == STATUS_ACTIVE)
        pending = sum(1 for p in self._positions if p.status == STATUS_PENDING)

        closed = [p for p in self._positions if p.status == STATUS_CLOSED]
        wins = sum(1 for p in closed if p.target_hit in WINNING_TARGETS)
        win_rate = wins / len(closed) * 100 if closed else 0

        rr_sum = sum(p.signal.risk_reward_ratio for p in self._positions)
        avg_rr = rr_sum / max(1, total)

        return PositionStats(
            total_positions=total,
            active_positions=active,
            pending_positions=pending,
            win_rate=int(round_half_up(win_rate)),
            avg_risk_reward=round_half_up(avg_rr, 2),
        )

    def check_signal_status(self, position: TradingPosition, current_price: float) -> SignalStatus:
        return check_signal_status(position, current_price)
