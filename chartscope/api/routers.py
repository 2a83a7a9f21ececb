"""Internal API routers — /patterns, /analysis, /positions, /stats, /charts endpoints.

No business logic, no DB access. Delegates to the scorer, the position
store and the chart pipeline. Store persistence failures surface as 503
through the handler registered in ``chartscope.main``.
"""

import logging
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from chartscope.market.models import Subject
from chartscope.patterns.catalog import get_available_patterns, get_pattern_details
from chartscope.patterns.scorer import AnalysisResult, analyze_patterns
from chartscope.positions.editor import apply_signal_edit, build_signal
from chartscope.positions.models import TradingPosition
from chartscope.series.pipeline import generate_chart_series

logger = logging.getLogger("chartscope")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_store = None          # Set via configure_routers()
_market_client = None  # Set via configure_routers()


def configure_routers(store=None, market_client=None) -> None:
    """Inject dependencies from the application startup.

    Args:
        store: A ``PositionStore`` instance (or duck-type for tests).
        market_client: A ``CoinGeckoClient`` used by ``/charts``.
    """
    global _store, _market_client  # noqa: PLW0603
    _store = store
    _market_client = market_client


def _require_store():
    if _store is None:
        raise HTTPException(status_code=503, detail="Position store not configured")
    return _store


def _position_dict(position: TradingPosition) -> dict:
    data = asdict(position)
    data["added_at"] = position.added_at.isoformat()
    data["pattern_analysis"] = (
        position.pattern_analysis.to_dict() if position.pattern_analysis else None
    )
    return data


# ── Request bodies ───────────────────────────────────────────────────────


class AnalysisRequest(BaseModel):
    selection: dict[str, str]
    momentum: dict[str, str] = Field(default_factory=dict)


class SignalBody(BaseModel):
    direction: str
    entry_price: float
    stop_loss: float
    take_profit_1: float
    take_profit_2: float
    confidence: float = Field(ge=0, le=100)


class NewPositionRequest(BaseModel):
    crypto_id: str
    crypto_symbol: str
    crypto_name: str
    crypto_image: str = ""
    signal: SignalBody
    pattern_analysis: Optional[dict] = None
    ai_analysis: Optional[str] = None


class StatusUpdate(BaseModel):
    status: str
    target_hit: Optional[str] = None


class NotesUpdate(BaseModel):
    notes: str


class SignalEdit(BaseModel):
    entry_price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit_1: Optional[float] = None
    take_profit_2: Optional[float] = None
    confidence: Optional[float] = Field(default=None, ge=0, le=100)


# ── Patterns ─────────────────────────────────────────────────────────────


@router.get("/patterns")
async def list_patterns():
    """Return the full pattern catalog."""
    return {"patterns": [asdict(get_pattern_details(n)) for n in get_available_patterns()]}


@router.get("/patterns/{name}")
async def get_pattern(name: str):
    entry = get_pattern_details(name)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Unknown pattern: {name}")
    return asdict(entry)


@router.post("/analysis")
async def run_analysis(body: AnalysisRequest):
    """Score a per-timeframe pattern selection."""
    try:
        result = analyze_patterns(body.selection, body.momentum)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return result.to_dict()


# ── Positions ────────────────────────────────────────────────────────────


@router.get("/positions")
async def list_positions(crypto_id: Optional[str] = Query(default=None)):
    store = _require_store()
    if crypto_id:
        positions = store.get_positions_by_subject(crypto_id)
    else:
        positions = store.get_all_positions()
    return {"positions": [_position_dict(p) for p in positions]}


@router.post("/positions", status_code=201)
async def create_position(body: NewPositionRequest):
    store = _require_store()
    try:
        signal = build_signal(**body.signal.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    analysis = None
    if body.pattern_analysis is not None:
        try:
            analysis = AnalysisResult.from_dict(body.pattern_analysis)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise HTTPException(status_code=422, detail=f"Invalid pattern_analysis: {exc}") from exc
    position = store.add_position(
        Subject(
            id=body.crypto_id,
            symbol=body.crypto_symbol,
            name=body.crypto_name,
            image=body.crypto_image,
        ),
        signal,
        pattern_analysis=analysis,
        ai_analysis=body.ai_analysis,
    )
    return _position_dict(position)


@router.delete("/positions/{position_id}")
async def delete_position(position_id: str):
    if not _require_store().remove_position(position_id):
        raise HTTPException(status_code=404, detail=f"Unknown position: {position_id}")
    return {"removed": position_id}


@router.patch("/positions/{position_id}/status")
async def update_status(position_id: str, body: StatusUpdate):
    store = _require_store()
    if store.get_position(position_id) is None:
        raise HTTPException(status_code=404, detail=f"Unknown position: {position_id}")
    try:
        updated = store.update_position_status(position_id, body.status, body.target_hit)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    if not updated:
        raise HTTPException(status_code=409, detail="Illegal status transition")
    return _position_dict(store.get_position(position_id))


@router.patch("/positions/{position_id}/notes")
async def update_notes(position_id: str, body: NotesUpdate):
    store = _require_store()
    if not store.update_position_notes(position_id, body.notes):
        raise HTTPException(status_code=404, detail=f"Unknown position: {position_id}")
    return _position_dict(store.get_position(position_id))


@router.patch("/positions/{position_id}/signal")
async def edit_signal(position_id: str, body: SignalEdit):
    """Edit signal levels; R:R is recomputed and the position marked verified."""
    store = _require_store()
    if not apply_signal_edit(store, position_id, **body.model_dump()):
        raise HTTPException(status_code=404, detail=f"Unknown position: {position_id}")
    return _position_dict(store.get_position(position_id))


@router.get("/positions/{position_id}/check")
async def check_position(position_id: str, price: float = Query(gt=0)):
    store = _require_store()
    position = store.get_position(position_id)
    if position is None:
        raise HTTPException(status_code=404, detail=f"Unknown position: {position_id}")
    return asdict(store.check_signal_status(position, price))


@router.get("/stats")
async def get_stats():
    return asdict(_require_store().get_stats())


# ── Charts ───────────────────────────────────────────────────────────────


@router.get("/charts/{coin_id}")
async def get_charts(coin_id: str):
    """Return the five resampled OHLC series for *coin_id*."""
    series = await generate_chart_series(_market_client, coin_id)
    return {
        "coin_id": coin_id,
        "is_placeholder": series.is_placeholder,
        "sources": series.sources,
        "series": {
            tf: [asdict(p) for p in points]
            for tf, points in series.by_timeframe().items()
        },
    }
