"""Position repository — SQLite CRUD for the positions table.

Columns mirror ``TradingPosition`` fields in snake_case; the signal is
flattened and the pattern analysis is stored as JSON.
"""

import json
import sqlite3
from datetime import datetime

from chartscope.patterns.scorer import AnalysisResult
from chartscope.positions.models import TradingPosition, TradingSignal
from chartscope.repos.db import get_connection


_COLUMNS = (
    "id", "user_id", "crypto_id", "crypto_symbol", "crypto_name",
    "crypto_image", "direction", "entry_price", "stop_loss",
    "take_profit_1", "take_profit_2", "risk_reward_ratio", "confidence",
    "pattern_analysis", "ai_analysis", "status", "target_hit", "notes",
    "is_manually_edited", "is_verified", "added_at",
)


def _to_row(user_id: str, p: TradingPosition) -> tuple:
    s = p.signal
    analysis = json.dumps(p.pattern_analysis.to_dict()) if p.pattern_analysis else None
    return (
        p.id, user_id, p.crypto_id, p.crypto_symbol, p.crypto_name,
        p.crypto_image, s.direction, s.entry_price, s.stop_loss,
        s.take_profit_1, s.take_profit_2, s.risk_reward_ratio, s.confidence,
        analysis, p.ai_analysis, p.status, p.target_hit, p.notes,
        int(p.is_manually_edited), int(p.is_verified), p.added_at.isoformat(),
    )


def _from_row(row: sqlite3.Row) -> TradingPosition:
    analysis = row["pattern_analysis"]
    return TradingPosition(
        id=row["id"],
        crypto_id=row["crypto_id"],
        crypto_symbol=row["crypto_symbol"],
        crypto_name=row["crypto_name"],
        crypto_image=row["crypto_image"],
        signal=TradingSignal(
            direction=row["direction"],
            entry_price=row["entry_price"],
            stop_loss=row["stop_loss"],
            take_profit_1=row["take_profit_1"],
            take_profit_2=row["take_profit_2"],
            risk_reward_ratio=row["risk_reward_ratio"],
            confidence=row["confidence"],
        ),
        pattern_analysis=AnalysisResult.from_dict(json.loads(analysis)) if analysis else None,
        ai_analysis=row["ai_analysis"],
        status=row["status"],
        target_hit=row["target_hit"],
        notes=row["notes"],
        is_manually_edited=bool(row["is_manually_edited"]),
        is_verified=bool(row["is_verified"]),
        added_at=datetime.fromisoformat(row["added_at"]),
    )


class PositionRepo:
    """Data access layer for position records.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    def upsert(self, user_id: str, position: TradingPosition) -> None:
        """Insert *position* or replace the stored row with the same id."""
        placeholders = ", ".join("?" for _ in _COLUMNS)
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                f"INSERT OR REPLACE INTO positions ({', '.join(_COLUMNS)}) "
                f"VALUES ({placeholders})",
                _to_row(user_id, position),
            )
            conn.commit()
        finally:
            conn.close()

    def delete(self, position_id: str) -> None:
        conn = get_connection(self._db_path)
        try:
            conn.execute("DELETE FROM positions WHERE id = ?", (position_id,))
            conn.commit()
        finally:
            conn.close()

    def delete_all(self, user_id: str) -> None:
        """Remove every position owned by *user_id*."""
        conn = get_connection(self._db_path)
        try:
            conn.execute("DELETE FROM positions WHERE user_id = ?", (user_id,))
            conn.commit()
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def list_for_user(self, user_id: str) -> list[TradingPosition]:
        """Return *user_id*'s positions, newest first."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM positions WHERE user_id = ? "
                "ORDER BY added_at DESC, rowid DESC",
                (user_id,),
            ).fetchall()
            return [_from_row(r) for r in rows]
        finally:
            conn.close()
