# ═══════════════════════════════════════════════════════════════════════════════
# PHASE OSCILLATOR MODEL
# One salesperson as a phase oscillator, plus circular statistics helpers
# ═══════════════════════════════════════════════════════════════════════════════


"""
A salesperson's position in the sales cycle is an angle on [0, 2pi).
Phase 0 means "ready for a new customer"; a completed cycle brings the phase
back around. Workload and skill ride along with the phase because they shape
both coupling strength and how fast the phase can advance.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable

import numpy as np


TWO_PI = 2 * np.pi


def wrap_phase(phase: float) -> float:
    """Wrap an angle into [0, 2pi)."""
    wrapped = float(np.mod(phase, TWO_PI))
    # np.mod of a tiny negative value rounds up to exactly 2pi
    if wrapped >= TWO_PI:
        wrapped = 0.0
    return wrapped


def wrap_phases(phases: np.ndarray) -> np.ndarray:
    """Vectorized wrap_phase."""
    wrapped = np.mod(phases, TWO_PI)
    wrapped[wrapped >= TWO_PI] = 0.0
    return wrapped


def order_parameter(phases: Iterable[float]) -> float:
    """Kuramoto order parameter r = |<e^{i theta}>|. Zero for no phases."""
    arr = np.asarray(list(phases), dtype=float)
    if arr.size == 0:
        return 0.0
    r = float(np.abs(np.mean(np.exp(1j * arr))))
    return min(max(r, 0.0), 1.0)


def circular_mean(phases: Iterable[float]) -> float:
    """Mean direction atan2(sum sin, sum cos), in (-pi, pi]."""
    arr = np.asarray(list(phases), dtype=float)
    if arr.size == 0:
        return 0.0
    return float(np.arctan2(np.sum(np.sin(arr)), np.sum(np.cos(arr))))


def circular_distance(a: float, b: float) -> float:
    """Shortest angular distance between two angles, in [0, pi]."""
    diff = abs(wrap_phase(a) - wrap_phase(b))
    if diff > np.pi:
        diff = TWO_PI - diff
    return float(diff)


def phase_lead(a: float, b: float) -> float:
    """How far a is ahead of b, measured forward around the circle, in [0, 2pi)."""
    return wrap_phase(a - b)


@dataclass
class PhaseOscillator:
    """One staff member in the coordination network."""
    id: str
    name: str
    phase: float = 0.0
    natural_frequency: float = 1.0     # Natural deal velocity
    active_deals: int = 0
    skill_level: float = 0.7           # 0-1
    deals_closed_today: int = 0
    avg_deal_duration: float = 120.0   # Minutes

    def __post_init__(self) -> None:
        self.phase = wrap_phase(self.phase)
        self.skill_level = float(min(max(self.skill_level, 0.0), 1.0))
        self.active_deals = max(int(self.active_deals), 0)

    def advance(self, delta: float) -> None:
        """Move the phase forward by delta radians, keeping it wrapped."""
        self.phase = wrap_phase(self.phase + delta)

    def set_phase(self, phase: float) -> None:
        self.phase = wrap_phase(phase)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "phase": self.phase,
            "natural_frequency": self.natural_frequency,
            "active_deals": self.active_deals,
            "skill_level": self.skill_level,
            "deals_closed_today": self.deals_closed_today,
            "avg_deal_duration": self.avg_deal_duration,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PhaseOscillator":
        return cls(**oscillator_kwargs(d))


def oscillator_kwargs(d: Dict[str, Any]) -> Dict[str, Any]:
    """Base oscillator fields from a saved dict, with defaults for missing keys."""
    return {
        "id": str(d["id"]),
        "name": str(d.get("name", d["id"])),
        "phase": float(d.get("phase", 0.0)),
        "natural_frequency": float(d.get("natural_frequency", 1.0)),
        "active_deals": int(d.get("active_deals", 0)),
        "skill_level": float(d.get("skill_level", 0.7)),
        "deals_closed_today": int(d.get("deals_closed_today", 0)),
        "avg_deal_duration": float(d.get("avg_deal_duration", 120.0)),
    }
