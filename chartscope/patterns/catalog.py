"""Chart pattern catalog and scoring weight tables.

Static data: each pattern maps to a directional signal, a base power on a
0-100 scale, a rarity class and a structural type.
"""

from dataclasses import dataclass
from typing import Optional

# Signals
BULLISH = "Bullish"
BEARISH = "Bearish"
NEUTRE = "Neutre"

# Momentum classes
CONTINUATION_ALIGNEE = "Continuation_alignée"  # continuation with the trend
RETOURNEMENT_ZONE = "Retournement_zone"  # reversal at a key zone
RETOURNEMENT_CONTRA = "Retournement_contra"  # counter-trend reversal


@dataclass(frozen=True)
class PatternEntry:
    """One row of the pattern catalog."""

    name: str
    signal: str  # "Bullish", "Bearish" or "Neutre"
    base_power: float
    rarity: str  # "Commune", "Rare", "Historique" or "Légendaire"
    structural_type: str  # "Retournement", "Continuation" or "Indécis"


def _entry(name: str, signal: str, power: float, rarity: str, kind: str) -> tuple[str, PatternEntry]:
    return name, PatternEntry(name, signal, power, rarity, kind)


PATTERNS: dict[str, PatternEntry] = dict([
    _entry("Double Top", BEARISH, 80, "Commune", "Retournement"),
    _entry("Double Bottom (W)", BULLISH, 85, "Commune", "Retournement"),
    _entry("Triple Top", BEARISH, 75, "Rare", "Retournement"),
    _entry("Triple Bottom", BULLISH, 80, "Rare", "Retournement"),
    _entry("Tête et Épaules", BEARISH, 90, "Historique", "Retournement"),
    _entry("Tête et Épaules Inversée", BULLISH, 90, "Historique", "Retournement"),
    _entry("Range / Rectangle", NEUTRE, 70, "Commune", "Continuation"),
    _entry("Drapeau (Flag)", BULLISH, 85, "Commune", "Continuation"),
    _entry("Fanion (Pennant)", BULLISH, 85, "Commune", "Continuation"),
    _entry("Biseau Ascendant", BEARISH, 80, "Commune", "Retournement"),
    _entry("Biseau Descendant", BULLISH, 80, "Commune", "Retournement"),
    _entry("Triangle Symétrique", NEUTRE, 70, "Commune", "Continuation"),
    _entry("Triangle Ascendant", BULLISH, 85, "Commune", "Continuation"),
    _entry("Triangle Descendant", BEARISH, 85, "Commune", "Continuation"),
    _entry("Rounding Bottom (Soucoupe)", BULLISH, 75, "Rare", "Retournement"),
    _entry("Rounding Top", BEARISH, 70, "Rare", "Retournement"),
    _entry("Cup & Handle", BULLISH, 90, "Légendaire", "Retournement"),
    _entry("Broadening Wedge", NEUTRE, 65, "Rare", "Indécis"),
    _entry("Diamant", NEUTRE, 95, "Légendaire", "Retournement"),
])

# Ordered highest timeframe first
TIMEFRAME_WEIGHTS: dict[str, float] = {
    "Monthly": 4,
    "Weekly": 3,
    "Daily": 2,
    "4h": 1.5,
    "1h": 1,
}

RARITY_BONUS: dict[str, float] = {
    "Commune": 1.00,
    "Rare": 1.05,
    "Historique": 1.10,
    "Légendaire": 1.15,
}

MOMENTUM_BONUS: dict[str, float] = {
    CONTINUATION_ALIGNEE: 1.20,
    RETOURNEMENT_ZONE: 1.25,
    NEUTRE: 1.00,
    RETOURNEMENT_CONTRA: 0.90,
}


def get_available_patterns() -> list[str]:
    """Return every catalog pattern name, in catalog order."""
    return list(PATTERNS)


def get_pattern_details(name: str) -> Optional[PatternEntry]:
    """Return the catalog entry for *name*, or ``None`` when unknown."""
    return PATTERNS.get(name)
