"""Tests for the position store, status evaluation and signal editing."""

import asyncio
import threading

import pytest

from chartscope.market.models import Subject
from chartscope.patterns.scorer import analyze_patterns
from chartscope.positions.editor import apply_signal_edit, build_signal, edit_signal
from chartscope.positions.models import TradingPosition
from chartscope.positions.status import (
    calculate_risk_reward,
    check_signal_status,
    is_valid_transition,
)
from chartscope.positions.store import PersistenceError, PositionStore
from chartscope.rounding import round_half_up


# ── Helpers ──────────────────────────────────────────────────────────────

BTC = Subject(id="bitcoin", symbol="btc", name="Bitcoin", image="https://img.test/btc.png")
ETH = Subject(id="ethereum", symbol="eth", name="Ethereum")


def _long_signal(**overrides):
    levels = dict(
        direction="long",
        entry_price=100.0,
        stop_loss=95.0,
        take_profit_1=108.0,
        take_profit_2=115.0,
        confidence=72.0,
    )
    levels.update(overrides)
    return build_signal(**levels)


def _short_signal():
    return build_signal("short", 100.0, 105.0, 92.0, 85.0, 60.0)


def _close(store, position_id, target_hit):
    assert store.update_position_status(position_id, "active") is True
    assert store.update_position_status(position_id, "closed", target_hit) is True


class _Recorder:
    """Subscriber that records every notification."""

    def __init__(self):
        self.calls: list[list[TradingPosition]] = []

    def __call__(self, positions):
        self.calls.append(positions)


# ── Risk / reward ────────────────────────────────────────────────────────


class TestRiskReward:
    def test_ratio(self):
        # reward 8, risk 5
        assert calculate_risk_reward(100.0, 95.0, 108.0) == 1.6

    def test_zero_risk_falls_back_to_one(self):
        assert calculate_risk_reward(100.0, 100.0, 110.0) == 1.0

    def test_build_signal_fills_ratio(self):
        assert _long_signal().risk_reward_ratio == 1.6

    def test_build_signal_rejects_direction(self):
        with pytest.raises(ValueError, match="direction"):
            build_signal("sideways", 1, 1, 1, 1, 50)

    def test_edit_signal_recomputes(self):
        edited = edit_signal(_long_signal(), take_profit_1=110.0, take_profit_2=None)
        assert edited.take_profit_1 == 110.0
        assert edited.take_profit_2 == 115.0
        assert edited.risk_reward_ratio == 2.0

    def test_edit_signal_rejects_unknown_field(self):
        with pytest.raises(ValueError, match="direction"):
            edit_signal(_long_signal(), direction=1.0)


class TestTransitionTable:
    def test_allowed_moves(self):
        assert is_valid_transition("pending", "active")
        assert is_valid_transition("pending", "cancelled")
        assert is_valid_transition("active", "closed", "tp2")
        assert is_valid_transition("active", "closed", "sl")

    def test_rejected_moves(self):
        assert not is_valid_transition("pending", "closed", "tp1")
        assert not is_valid_transition("active", "cancelled")
        assert not is_valid_transition("active", "pending")
        assert not is_valid_transition("closed", "closed", "sl")
        assert not is_valid_transition("cancelled", "pending")

    def test_half_up_helper(self):
        assert round_half_up(12.5) == 13
        assert round_half_up(1.125, 2) == 1.13
        assert round_half_up(2.5) == 3


# ── Price-based status ───────────────────────────────────────────────────


class TestCheckSignalStatus:
    def _position(self, signal):
        store = PositionStore()
        return store.add_position(BTC, signal)

    def test_long_tp1(self):
        status = check_signal_status(self._position(_long_signal()), 108.0)
        assert status.status == "tp1_hit"
        assert status.price_distance == pytest.approx(8.0)

    def test_long_tp2(self):
        assert check_signal_status(self._position(_long_signal()), 120.0).status == "tp2_hit"

    def test_long_sl(self):
        status = check_signal_status(self._position(_long_signal()), 94.0)
        assert status.status == "sl_hit"
        assert status.price_distance == pytest.approx(-6.0)

    def test_long_entry_zone(self):
        status = check_signal_status(self._position(_long_signal()), 101.0)
        assert status.status == "entry_zone"
        assert status.price_distance == pytest.approx(1.0)

    def test_long_just_outside_entry_zone(self):
        assert check_signal_status(self._position(_long_signal()), 102.5).status == "waiting"

    def test_long_waiting(self):
        assert check_signal_status(self._position(_long_signal()), 104.0).status == "waiting"

    def test_short_mirrors_comparisons(self):
        pos = self._position(_short_signal())
        assert check_signal_status(pos, 84.0).status == "tp2_hit"
        assert check_signal_status(pos, 90.0).status == "tp1_hit"
        assert check_signal_status(pos, 105.0).status == "sl_hit"
        assert check_signal_status(pos, 99.0).status == "entry_zone"
        assert check_signal_status(pos, 96.0).status == "waiting"

    def test_zero_entry_has_no_distance(self):
        status = check_signal_status(self._position(_long_signal(entry_price=0.0, stop_loss=0.0)), 5.0)
        assert status.price_distance == 0.0
        assert status.status == "waiting"

    def test_store_delegates(self):
        store = PositionStore()
        pos = store.add_position(BTC, _long_signal())
        assert store.check_signal_status(pos, 108.0) == check_signal_status(pos, 108.0)


# ── Store lifecycle ──────────────────────────────────────────────────────


class TestPositionStore:
    def test_add_position_defaults(self):
        store = PositionStore()
        analysis = analyze_patterns({"Weekly": "Cup & Handle"})
        pos = store.add_position(BTC, _long_signal(), pattern_analysis=analysis)
        assert pos.id.startswith("pos_")
        assert pos.status == "pending"
        assert pos.target_hit == "none"
        assert pos.is_manually_edited is False
        assert pos.is_verified is False
        assert pos.crypto_symbol == "btc"
        assert pos.crypto_image == "https://img.test/btc.png"
        assert pos.pattern_analysis == analysis
        assert pos.added_at.tzinfo is not None

    def test_ids_unique_and_newest_first(self):
        store = PositionStore()
        first = store.add_position(BTC, _long_signal())
        second = store.add_position(ETH, _long_signal())
        assert first.id != second.id
        assert [p.id for p in store.get_all_positions()] == [second.id, first.id]

    def test_returned_positions_are_snapshots(self):
        store = PositionStore()
        pos = store.add_position(BTC, _long_signal())
        pos.status = "closed"
        store.get_all_positions()[0].notes = "tampered"
        stored = store.get_position(pos.id)
        assert stored.status == "pending"
        assert stored.notes is None

    def test_remove_is_idempotent(self):
        store = PositionStore()
        pos = store.add_position(BTC, _long_signal())
        assert store.remove_position(pos.id) is True
        assert store.remove_position(pos.id) is False
        assert store.get_all_positions() == []

    def test_lifecycle_to_closed(self):
        store = PositionStore()
        pos = store.add_position(BTC, _long_signal())
        assert store.update_position_status(pos.id, "active") is True
        assert store.update_position_status(pos.id, "closed", "tp1") is True
        stored = store.get_position(pos.id)
        assert stored.status == "closed"
        assert stored.target_hit == "tp1"

    def test_illegal_transition_rejected(self):
        store = PositionStore()
        pos = store.add_position(BTC, _long_signal())
        store.update_position_status(pos.id, "cancelled")
        assert store.update_position_status(pos.id, "pending") is False
        assert store.get_position(pos.id).status == "cancelled"

    def test_pending_cannot_close_directly(self):
        store = PositionStore()
        pos = store.add_position(BTC, _long_signal())
        assert store.update_position_status(pos.id, "closed", "tp1") is False
        assert store.get_position(pos.id).status == "pending"

    def test_active_cannot_be_cancelled(self):
        store = PositionStore()
        pos = store.add_position(BTC, _long_signal())
        store.update_position_status(pos.id, "active")
        assert store.update_position_status(pos.id, "cancelled") is False
        assert store.get_position(pos.id).status == "active"

    def test_close_requires_target(self):
        store = PositionStore()
        pos = store.add_position(BTC, _long_signal())
        store.update_position_status(pos.id, "active")
        assert store.update_position_status(pos.id, "closed") is False
        assert store.update_position_status(pos.id, "closed", "none") is False
        assert store.get_position(pos.id).status == "active"

    def test_target_only_on_close(self):
        store = PositionStore()
        pos = store.add_position(BTC, _long_signal())
        assert store.update_position_status(pos.id, "active", "tp1") is False
        assert store.get_position(pos.id).target_hit == "none"

    def test_closed_position_cannot_be_retagged(self):
        store = PositionStore()
        pos = store.add_position(BTC, _long_signal())
        _close(store, pos.id, "tp1")
        assert store.update_position_status(pos.id, "closed", "sl") is False
        assert store.get_position(pos.id).target_hit == "tp1"
        assert store.get_stats().win_rate == 100

    def test_cancelled_is_final(self):
        store = PositionStore()
        pos = store.add_position(BTC, _long_signal())
        store.update_position_status(pos.id, "cancelled")
        assert store.update_position_status(pos.id, "cancelled") is False

    def test_reapplying_open_status_is_allowed(self):
        store = PositionStore()
        pos = store.add_position(BTC, _long_signal())
        assert store.update_position_status(pos.id, "pending") is True
        store.update_position_status(pos.id, "active")
        assert store.update_position_status(pos.id, "active") is True

    def test_permissive_mode_allows_any_overwrite(self):
        store = PositionStore(enforce_transitions=False)
        pos = store.add_position(BTC, _long_signal())
        store.update_position_status(pos.id, "closed", "sl")
        assert store.update_position_status(pos.id, "pending") is True
        assert store.get_position(pos.id).status == "pending"

    def test_unknown_status_value_raises(self):
        store = PositionStore()
        pos = store.add_position(BTC, _long_signal())
        with pytest.raises(ValueError, match="status"):
            store.update_position_status(pos.id, "open")
        with pytest.raises(ValueError, match="target_hit"):
            store.update_position_status(pos.id, "closed", "tp3")

    def test_unknown_ids_return_false(self):
        store = PositionStore()
        assert store.update_position_status("nope", "active") is False
        assert store.update_position_notes("nope", "x") is False
        assert store.update_position_signal("nope", _long_signal()) is False
        assert store.get_position("nope") is None

    def test_notes(self):
        store = PositionStore()
        pos = store.add_position(BTC, _long_signal())
        assert store.update_position_notes(pos.id, "wait for retest") is True
        assert store.get_position(pos.id).notes == "wait for retest"

    def test_update_signal_zero_risk(self):
        store = PositionStore()
        pos = store.add_position(BTC, _long_signal())
        flat = _long_signal(stop_loss=100.0)
        assert store.update_position_signal(pos.id, flat) is True
        assert store.get_position(pos.id).signal.risk_reward_ratio == 1.0

    def test_update_signal_does_not_mark_edited_by_default(self):
        store = PositionStore()
        pos = store.add_position(BTC, _long_signal())
        store.update_position_signal(pos.id, _long_signal(take_profit_1=110.0))
        stored = store.get_position(pos.id)
        assert stored.signal.risk_reward_ratio == 2.0
        assert stored.is_manually_edited is False

    def test_editor_marks_edited_and_verified(self):
        store = PositionStore()
        pos = store.add_position(BTC, _long_signal())
        assert apply_signal_edit(store, pos.id, stop_loss=96.0) is True
        stored = store.get_position(pos.id)
        assert stored.signal.stop_loss == 96.0
        assert stored.signal.risk_reward_ratio == 2.0
        assert stored.is_manually_edited is True
        assert stored.is_verified is True
        assert apply_signal_edit(store, "nope", stop_loss=1.0) is False

    def test_has_position_only_for_open(self):
        store = PositionStore()
        pos = store.add_position(BTC, _long_signal())
        assert store.has_position("bitcoin") is True
        assert store.has_position("ethereum") is False
        store.update_position_status(pos.id, "cancelled")
        assert store.has_position("bitcoin") is False

    def test_positions_by_subject(self):
        store = PositionStore()
        store.add_position(BTC, _long_signal())
        store.add_position(ETH, _long_signal())
        store.add_position(BTC, _short_signal())
        assert len(store.get_positions_by_subject("bitcoin")) == 2

    def test_clear_all(self):
        store = PositionStore()
        store.add_position(BTC, _long_signal())
        store.clear_all_positions()
        assert store.get_all_positions() == []


class TestStats:
    def test_empty_store(self):
        stats = PositionStore().get_stats()
        assert stats.total_positions == 0
        assert stats.win_rate == 0
        assert stats.avg_risk_reward == 0

    def test_win_rate_and_counts(self):
        store = PositionStore()
        win = store.add_position(BTC, _long_signal())
        loss = store.add_position(ETH, _long_signal(take_profit_1=110.0))
        store.add_position(BTC, _long_signal())
        active = store.add_position(ETH, _long_signal())
        _close(store, win.id, "tp1")
        _close(store, loss.id, "sl")
        store.update_position_status(active.id, "active")

        stats = store.get_stats()
        assert stats.win_rate == 50
        assert stats.total_positions == 4
        assert stats.active_positions == 1
        assert stats.pending_positions == 1
        # (1.6 + 2.0 + 1.6 + 1.6) / 4
        assert stats.avg_risk_reward == pytest.approx(1.7)

    def test_win_rate_rounds_half_up(self):
        store = PositionStore()
        ids = [store.add_position(BTC, _long_signal()).id for _ in range(8)]
        _close(store, ids[0], "tp1")
        for pos_id in ids[1:]:
            _close(store, pos_id, "sl")
        # 1 / 8 = 12.5 %
        assert store.get_stats().win_rate == 13

    def test_avg_risk_reward_rounds_half_up(self):
        store = PositionStore()
        store.add_position(BTC, _long_signal(stop_loss=100.0))
        store.add_position(ETH, _long_signal(stop_loss=96.0, take_profit_1=105.0))
        # (1.0 + 1.25) / 2 = 1.125
        assert store.get_stats().avg_risk_reward == 1.13

    def test_cancelled_not_counted_as_closed(self):
        store = PositionStore()
        pos = store.add_position(BTC, _long_signal())
        store.update_position_status(pos.id, "cancelled")
        assert store.get_stats().win_rate == 0


class TestSubscriptions:
    def test_subscribe_fires_immediately(self):
        store = PositionStore()
        store.add_position(BTC, _long_signal())
        rec = _Recorder()
        store.subscribe(rec)
        assert len(rec.calls) == 1
        assert len(rec.calls[0]) == 1

    def test_one_notification_per_mutation(self):
        store = PositionStore()
        rec = _Recorder()
        store.subscribe(rec)
        pos = store.add_position(BTC, _long_signal())
        store.update_position_status(pos.id, "active")
        store.update_position_notes(pos.id, "n")
        store.update_position_signal(pos.id, _long_signal())
        store.remove_position(pos.id)
        store.clear_all_positions()
        assert len(rec.calls) == 7
        assert [len(c) for c in rec.calls] == [0, 1, 1, 1, 1, 0, 0]

    def test_no_op_mutations_do_not_notify(self):
        store = PositionStore()
        pos = store.add_position(BTC, _long_signal())
        store.update_position_status(pos.id, "cancelled")
        rec = _Recorder()
        store.subscribe(rec)
        store.remove_position("nope")
        store.update_position_notes("nope", "x")
        store.update_position_status(pos.id, "active")  # rejected
        assert len(rec.calls) == 1

    def test_unsubscribe(self):
        store = PositionStore()
        rec = _Recorder()
        unsubscribe = store.subscribe(rec)
        unsubscribe()
        unsubscribe()
        store.add_position(BTC, _long_signal())
        assert len(rec.calls) == 1

    def test_failing_subscriber_does_not_block_others(self):
        store = PositionStore()

        def _broken(positions):
            if positions:
                raise RuntimeError("boom")

        rec = _Recorder()
        store.subscribe(_broken)
        store.subscribe(rec)
        store.add_position(BTC, _long_signal())
        assert len(rec.calls) == 2


# ── User context ─────────────────────────────────────────────────────────


class _FakeRepo:
    """In-memory repo; loads for *slow_user* block until released."""

    def __init__(self, slow_user=None):
        self.rows: dict[str, dict[str, TradingPosition]] = {}
        self.slow_user = slow_user
        self.release = threading.Event()

    def upsert(self, user_id, position):
        self.rows.setdefault(user_id, {})[position.id] = position

    def delete(self, position_id):
        for rows in self.rows.values():
            rows.pop(position_id, None)

    def delete_all(self, user_id):
        self.rows.pop(user_id, None)

    def list_for_user(self, user_id):
        if user_id == self.slow_user:
            self.release.wait(timeout=5)
        return sorted(self.rows.get(user_id, {}).values(), key=lambda p: p.added_at, reverse=True)


class TestUserContext:
    def test_switching_user_reloads(self):
        repo = _FakeRepo()
        store = PositionStore(repo=repo, user_id="alice")
        store.add_position(BTC, _long_signal())
        store.set_current_user("bob")
        assert store.get_all_positions() == []
        store.set_current_user("alice")
        assert len(store.get_all_positions()) == 1

    def test_no_user_keeps_memory_only(self):
        repo = _FakeRepo()
        store = PositionStore(repo=repo)
        store.add_position(BTC, _long_signal())
        assert repo.rows == {}

    def test_mutations_persist(self):
        repo = _FakeRepo()
        store = PositionStore(repo=repo, user_id="alice")
        pos = store.add_position(BTC, _long_signal())
        store.update_position_status(pos.id, "active")
        assert repo.rows["alice"][pos.id].status == "active"
        store.remove_position(pos.id)
        assert repo.rows["alice"] == {}

    def test_switch_notifies_subscribers(self):
        repo = _FakeRepo()
        store = PositionStore(repo=repo, user_id="alice")
        store.add_position(BTC, _long_signal())
        rec = _Recorder()
        store.subscribe(rec)
        store.set_current_user(None)
        assert rec.calls[-1] == []

    @pytest.mark.asyncio
    async def test_async_load(self):
        repo = _FakeRepo()
        PositionStore(repo=repo, user_id="alice").add_position(BTC, _long_signal())
        store = PositionStore(repo=repo)
        assert await store.load_current_user_async("alice") is True
        assert len(store.get_all_positions()) == 1

    @pytest.mark.asyncio
    async def test_stale_async_load_discarded(self):
        repo = _FakeRepo(slow_user="alice")
        PositionStore(repo=repo, user_id="bob").add_position(ETH, _long_signal())
        repo.rows.setdefault("alice", {})
        store = PositionStore(repo=repo)

        task = asyncio.create_task(store.load_current_user_async("alice"))
        await asyncio.sleep(0.05)
        store.set_current_user("bob")
        repo.release.set()

        assert await task is False
        assert store.current_user == "bob"
        assert [p.crypto_id for p in store.get_all_positions()] == ["ethereum"]


# ── Persistence failures ─────────────────────────────────────────────────


class _FlakyRepo(_FakeRepo):
    """Repo whose writes raise ``OSError`` while ``failing`` is set."""

    def __init__(self):
        super().__init__()
        self.failing = False

    def _check(self):
        if self.failing:
            raise OSError("disk full")

    def upsert(self, user_id, position):
        self._check()
        super().upsert(user_id, position)

    def delete(self, position_id):
        self._check()
        super().delete(position_id)

    def delete_all(self, user_id):
        self._check()
        super().delete_all(user_id)


class TestPersistenceFailures:
    def _store(self):
        repo = _FlakyRepo()
        store = PositionStore(repo=repo, user_id="alice")
        pos = store.add_position(BTC, _long_signal())
        rec = _Recorder()
        store.subscribe(rec)
        repo.failing = True
        return store, repo, pos, rec

    def test_failed_add_leaves_store_unchanged(self):
        repo = _FlakyRepo()
        repo.failing = True
        store = PositionStore(repo=repo, user_id="alice")
        rec = _Recorder()
        store.subscribe(rec)
        with pytest.raises(PersistenceError, match="disk full"):
            store.add_position(BTC, _long_signal())
        assert store.get_all_positions() == []
        assert len(rec.calls) == 1

    def test_failed_status_update_keeps_old_status(self):
        store, repo, pos, rec = self._store()
        with pytest.raises(PersistenceError):
            store.update_position_status(pos.id, "active")
        assert store.get_position(pos.id).status == "pending"
        assert len(rec.calls) == 1

    def test_failed_notes_and_signal_updates(self):
        store, repo, pos, rec = self._store()
        with pytest.raises(PersistenceError):
            store.update_position_notes(pos.id, "lost")
        with pytest.raises(PersistenceError):
            apply_signal_edit(store, pos.id, stop_loss=90.0)
        stored = store.get_position(pos.id)
        assert stored.notes is None
        assert stored.signal.stop_loss == 95.0
        assert stored.is_manually_edited is False
        assert len(rec.calls) == 1

    def test_failed_remove_and_clear_keep_positions(self):
        store, repo, pos, rec = self._store()
        with pytest.raises(PersistenceError):
            store.remove_position(pos.id)
        with pytest.raises(PersistenceError):
            store.clear_all_positions()
        assert [p.id for p in store.get_all_positions()] == [pos.id]
        assert len(rec.calls) == 1

    def test_later_mutation_snapshot_excludes_failed_change(self):
        store, repo, pos, rec = self._store()
        with pytest.raises(PersistenceError):
            store.update_position_notes(pos.id, "lost")
        repo.failing = False
        store.update_position_status(pos.id, "active")
        assert rec.calls[-1][0].notes is None
        assert rec.calls[-1][0].status == "active"
