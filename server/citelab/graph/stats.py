"""Regex detection of reported statistics in abstracts.

Quality is a coarse 0-3 score from the strongest significant p-value:
3 for p < 0.001, 2 for p < 0.01, 1 for p < 0.05, otherwise 0.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

_P_RE = re.compile(r"\b[pP]\s*([<=>≤≥])\s*(0\.\d+|\d+\.\d+|\d+e-\d+)\b")
_T_RE = re.compile(r"\bt\s*\(\s*(\d+)\s*\)\s*=\s*(-?\d+(?:\.\d+)?)")
_CI_RE = re.compile(
    r"(\b(?:95%\s*CI|CI\s*95%)\b[^0-9]{0,10})(-?\d+(?:\.\d+)?)[\s–-]+(-?\d+(?:\.\d+)?)",
    re.IGNORECASE,
)
_EFFECT_RE = re.compile(r"\b(OR|RR|HR)\s*(?:=|:)?\s*(-?\d+(?:\.\d+)?)")


def _number(raw: str | None) -> float | None:
    if not raw:
        return None
    try:
        return float(raw.replace(",", "."))
    except ValueError:
        return None


@dataclass(frozen=True)
class PValue:
    raw: str
    operator: str
    value: float | None


@dataclass(frozen=True)
class TTest:
    raw: str
    df: int
    value: float | None


@dataclass(frozen=True)
class ConfidenceInterval:
    raw: str
    low: float | None
    high: float | None
    level: int = 95


@dataclass(frozen=True)
class Effect:
    raw: str
    kind: str
    value: float | None


@dataclass
class ExtractedStats:
    p_values: list[PValue] = field(default_factory=list)
    t_tests: list[TTest] = field(default_factory=list)
    confidence_intervals: list[ConfidenceInterval] = field(default_factory=list)
    effects: list[Effect] = field(default_factory=list)

    @property
    def has_any(self) -> bool:
        return bool(self.p_values or self.t_tests or self.confidence_intervals or self.effects)


def extract_stats(text: str | None) -> ExtractedStats:
    s = " ".join((text or "").split())
    out = ExtractedStats()
    for m in _P_RE.finditer(s):
        out.p_values.append(PValue(raw=m.group(0), operator=m.group(1), value=_number(m.group(2))))
    for m in _T_RE.finditer(s):
        out.t_tests.append(TTest(raw=m.group(0), df=int(m.group(1)), value=_number(m.group(2))))
    for m in _CI_RE.finditer(s):
        out.confidence_intervals.append(
            ConfidenceInterval(raw=m.group(0), low=_number(m.group(2)), high=_number(m.group(3)))
        )
    for m in _EFFECT_RE.finditer(s):
        out.effects.append(Effect(raw=m.group(0), kind=m.group(1), value=_number(m.group(2))))
    return out


def stats_quality(stats: ExtractedStats) -> int:
    quality = 0
    for p in stats.p_values:
        if p.value is not None:
            if p.value < 0.001:
                quality = max(quality, 3)
            elif p.value < 0.01:
                quality = max(quality, 2)
            elif p.value < 0.05:
                quality = max(quality, 1)
            continue
        raw = p.raw.lower()
        if "0.001" in raw:
            quality = max(quality, 3)
        elif "0.01" in raw:
            quality = max(quality, 2)
        elif "0.05" in raw:
            quality = max(quality, 1)
    return quality


def abstract_quality(text: str | None) -> int:
    return stats_quality(extract_stats(text))
