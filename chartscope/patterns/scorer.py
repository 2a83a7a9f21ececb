"""Multi-timeframe pattern scoring — pure math, no I/O.

Each selected pattern contributes::

    power = base_power × rarity_bonus × timeframe_weight × momentum_bonus

Bullish powers sum into ``bull``, bearish into ``bear``; neutral patterns
are recorded but do not score.  The dominant side's share of the total is
the confidence.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Mapping, Optional, Union

from chartscope.patterns.catalog import (
    BEARISH,
    BULLISH,
    CONTINUATION_ALIGNEE,
    MOMENTUM_BONUS,
    NEUTRE,
    PATTERNS,
    RARITY_BONUS,
    RETOURNEMENT_ZONE,
    TIMEFRAME_WEIGHTS,
)
from chartscope.rounding import round_half_up

logger = logging.getLogger("chartscope")

NO_PATTERN = "Aucun pattern détecté"
NO_STRONGEST = "Aucun"

_FIELDS = {"Monthly": "monthly", "Weekly": "weekly", "Daily": "daily", "4h": "h4", "1h": "h1"}


def _check_timeframes(mapping: Mapping[str, str]) -> None:
    unknown = [tf for tf in mapping if tf not in _FIELDS]
    if unknown:
        raise ValueError(
            f"Unknown timeframe(s): {', '.join(unknown)}. "
            f"Expected: {', '.join(_FIELDS)}"
        )


@dataclass(frozen=True)
class PatternSelection:
    """Pattern name observed per timeframe; ``None`` means no pattern."""

    monthly: Optional[str] = None
    weekly: Optional[str] = None
    daily: Optional[str] = None
    h4: Optional[str] = None
    h1: Optional[str] = None

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, str]) -> "PatternSelection":
        """Build from ``{"Weekly": "Cup & Handle", ...}``.

        Raises ``ValueError`` for a key that is not a known timeframe.
        """
        _check_timeframes(mapping)
        return cls(**{_FIELDS[tf]: name for tf, name in mapping.items()})

    def items(self) -> list[tuple[str, str]]:
        """Return ``(timeframe, pattern)`` pairs, highest timeframe first."""
        pairs = []
        for tf, attr in _FIELDS.items():
            name = getattr(self, attr)
            if name:
                pairs.append((tf, name))
        return pairs


@dataclass(frozen=True)
class MomentumContext:
    """Momentum class per timeframe; missing timeframes are ``Neutre``."""

    monthly: str = NEUTRE
    weekly: str = NEUTRE
    daily: str = NEUTRE
    h4: str = NEUTRE
    h1: str = NEUTRE

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, str]) -> "MomentumContext":
        _check_timeframes(mapping)
        return cls(**{_FIELDS[tf]: m for tf, m in mapping.items() if m})

    def get(self, timeframe: str) -> str:
        return getattr(self, _FIELDS[timeframe])


@dataclass(frozen=True)
class AnalysisDetails:
    """Diagnostics attached to an ``AnalysisResult``."""

    total_score: float
    dominant_timeframes: list[str]
    strongest_pattern: str
    patterns: dict[str, str]
    skipped: list[tuple[str, str]] = field(default_factory=list)


@dataclass(frozen=True)
class AnalysisResult:
    """Outcome of a multi-timeframe pattern analysis."""

    signal: str
    bull: float
    bear: float
    confidence: float
    details: AnalysisDetails

    def to_dict(self) -> dict:
        return {
            "signal": self.signal,
            "bull": self.bull,
            "bear": self.bear,
            "confidence": self.confidence,
            "details": {
                "total_score": self.details.total_score,
                "dominant_timeframes": list(self.details.dominant_timeframes),
                "strongest_pattern": self.details.strongest_pattern,
                "patterns": dict(self.details.patterns),
                "skipped": [list(s) for s in self.details.skipped],
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AnalysisResult":
        details = data.get("details", {})
        return cls(
            signal=data["signal"],
            bull=float(data.get("bull", 0)),
            bear=float(data.get("bear", 0)),
            confidence=float(data.get("confidence", 0)),
            details=AnalysisDetails(
                total_score=float(details.get("total_score", 0)),
                dominant_timeframes=list(details.get("dominant_timeframes", [])),
                strongest_pattern=details.get("strongest_pattern", NO_STRONGEST),
                patterns=dict(details.get("patterns", {})),
                skipped=[tuple(s) for s in details.get("skipped", [])],
            ),
        )


@dataclass(frozen=True)
class _Scored:
    timeframe: str
    pattern: str
    power: float
    signal: str


SelectionInput = Union[PatternSelection, Mapping[str, str]]
MomentumInput = Union[MomentumContext, Mapping[str, str], None]


def analyze_patterns(
    selection: SelectionInput,
    momentum: MomentumInput = None,
) -> AnalysisResult:
    """Score a per-timeframe pattern selection.

    Args:
        selection: Pattern per timeframe (record or plain mapping).
        momentum: Momentum class per timeframe; defaults to ``Neutre``.

    Returns:
        A fresh ``AnalysisResult``.  Unknown pattern names are skipped and
        listed in ``details.skipped``; a selection with nothing to score
        yields a ``Neutre`` result with zero confidence.
    """
    if not isinstance(selection, PatternSelection):
        selection = PatternSelection.from_mapping(selection)
    if momentum is None:
        momentum = MomentumContext()
    elif not isinstance(momentum, MomentumContext):
        momentum = MomentumContext.from_mapping(momentum)

    bull_score = 0.0
    bear_score = 0.0
    scored: list[_Scored] = []
    patterns: dict[str, str] = {}
    skipped: list[tuple[str, str]] = []

    for tf, name in selection.items():
        entry = PATTERNS.get(name)
        if entry is None:
            logger.warning("Skipping unknown pattern '%s' on %s", name, tf)
            skipped.append((tf, name))
            continue

        momentum_class = momentum.get(tf)
        bonus = MOMENTUM_BONUS.get(momentum_class)
        if bonus is None:
            logger.warning(
                "Unknown momentum class '%s' on %s, using %s", momentum_class, tf, NEUTRE,
            )
            bonus = MOMENTUM_BONUS[NEUTRE]

        power = entry.base_power
        power *= RARITY_BONUS[entry.rarity]
        power *= TIMEFRAME_WEIGHTS[tf]
        power *= bonus

        scored.append(_Scored(tf, name, power, entry.signal))
        patterns[tf] = name

        if entry.signal == BULLISH:
            bull_score += power
        elif entry.signal == BEARISH:
            bear_score += power

    total = bull_score + bear_score
    if total == 0:
        return AnalysisResult(
            signal=NEUTRE,
            bull=0.0,
            bear=0.0,
            confidence=0.0,
            details=AnalysisDetails(
                total_score=0.0,
                dominant_timeframes=[],
                strongest_pattern=NO_PATTERN,
                patterns=patterns,
                skipped=skipped,
            ),
        )

    if bull_score > bear_score:
        orientation = BULLISH
        confidence = round_half_up(bull_score / total * 100, 2)
    elif bear_score > bull_score:
        orientation = BEARISH
        confidence = round_half_up(bear_score / total * 100, 2)
    else:
        orientation = NEUTRE
        confidence = 50.0

    # Stable sort keeps highest-timeframe-first order on equal power
    ranked = sorted(scored, key=lambda s: s.power, reverse=True)
    dominant = [s.timeframe for s in ranked if s.signal == orientation][:3]
    strongest = ranked[0].pattern if ranked else NO_STRONGEST

    return AnalysisResult(
        signal=orientation,
        bull=round_half_up(bull_score, 2),
        bear=round_half_up(bear_score, 2),
        confidence=confidence,
        details=AnalysisDetails(
            total_score=round_half_up(total, 2),
            dominant_timeframes=dominant,
            strongest_pattern=strongest,
            patterns=patterns,
            skipped=skipped,
        ),
    )


def convergence_label(result: AnalysisResult) -> str:
    """Summarise how many timeframes back the dominant signal."""
    return f"Positive sur {len(result.details.dominant_timeframes)}/{len(TIMEFRAME_WEIGHTS)} timeframes"


# ── Sample selections ────────────────────────────────────────────────────


def example_selection() -> tuple[PatternSelection, MomentumContext]:
    """A fixed, fully bullish five-timeframe selection."""
    selection = PatternSelection(
        monthly="Cup & Handle",
        weekly="Tête et Épaules Inversée",
        daily="Triangle Ascendant",
        h4="Fanion (Pennant)",
        h1="Double Bottom (W)",
    )
    momentum = MomentumContext(
        monthly=RETOURNEMENT_ZONE,
        weekly=RETOURNEMENT_ZONE,
        daily=CONTINUATION_ALIGNEE,
        h4=CONTINUATION_ALIGNEE,
        h1=RETOURNEMENT_ZONE,
    )
    return selection, momentum


def random_selection(
    rng: Optional[random.Random] = None,
) -> tuple[PatternSelection, MomentumContext]:
    """Draw a demo selection: each timeframe has a 70% chance of a pattern."""
    rng = rng or random.Random()
    names = list(PATTERNS)
    classes = list(MOMENTUM_BONUS)
    picks: dict[str, str] = {}
    moments: dict[str, str] = {}
    for tf in TIMEFRAME_WEIGHTS:
        if rng.random() > 0.3:
            picks[tf] = rng.choice(names)
            moments[tf] = rng.choice(classes)
    return PatternSelection.from_mapping(picks), MomentumContext.from_mapping(moments)
