# ═══════════════════════════════════════════════════════════════════════════════
# OSCILLATOR COORDINATION NETWORK
# Kuramoto coupling across a sales team
# ═══════════════════════════════════════════════════════════════════════════════


"""
Salespeople are coupled phase oscillators. Coupling pulls teammates toward a
common rhythm, more strongly between people of similar skill. Heavy workload
slows a person's phase. From the resulting state we read:

- who should get the next lead (phase near 0, light workload, skill match)
- how coordinated the team is (order parameter)
- who is drifting away from the team rhythm (bottlenecks)
- who could mentor whom (leader slightly ahead in phase, clearly more skilled)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np
from loguru import logger

from adaptive_core.core.persistence import restore_from_storage, save_state
from adaptive_core.core.phase_oscillator import (
    TWO_PI,
    PhaseOscillator,
    circular_distance,
    circular_mean,
    order_parameter,
    phase_lead,
    wrap_phase,
    wrap_phases,
)
from adaptive_core.core.storage import StoragePort


STATE_KIND = "oscillator_network"


@dataclass
class NetworkConfig:
    """Configuration for the coordination network."""
    coupling_strength: float = 0.3     # K in the Kuramoto equation
    workload_damping: float = 0.1      # Per active deal
    default_dt: float = 0.1
    history_length: int = 1000
    saved_coherence_samples: int = 100
    seed: Optional[int] = None

    # Query thresholds
    bottleneck_distance: float = np.pi / 3
    far_behind_distance: float = np.pi / 2
    overload_deals: int = 5
    idle_after_time: float = 4.0
    mentor_min_lead: float = 0.5
    mentor_max_lead: float = 1.5
    mentor_min_skill_gap: float = 0.15
    max_mentoring_pairs: int = 3


@dataclass
class NetworkSnapshot:
    """One history entry: simulated time, coherence and every phase."""
    time: float
    coherence: float
    phases: Dict[str, float]


@dataclass
class Bottleneck:
    salesperson_id: str
    name: str
    phase_difference: float
    active_deals: int
    issue: str


@dataclass
class MentoringRecommendation:
    mentor_id: str
    mentor_name: str
    mentee_id: str
    mentee_name: str
    skill_gap: float
    phase_lead: float
    recommendation: str


@dataclass
class TeamMember:
    id: str
    name: str
    phase: float
    active_deals: int
    deals_today: int
    skill_level: float
    status: str   # overloaded | idle | crushing_it | normal


@dataclass
class TeamStatus:
    coherence: float
    status: str   # excellent | good | needs_attention | critical
    total_salespeople: int
    bottlenecks: List[Bottleneck] = field(default_factory=list)
    mentoring_opportunities: List[MentoringRecommendation] = field(default_factory=list)
    team_members: List[TeamMember] = field(default_factory=list)


def coherence_status(coherence: float) -> str:
    """Map an order parameter onto a team health label."""
    if coherence > 0.8:
        return "excellent"
    if coherence > 0.6:
        return "good"
    if coherence > 0.4:
        return "needs_attention"
    return "critical"


class OscillatorNetwork:
    """
    Coupled-oscillator model of a sales team.

    Oscillators live in an id -> oscillator dict. Iteration follows insertion
    order, so every argmax query (lead assignment included) breaks ties in
    favour of whoever joined the network first.
    """

    state_kind = STATE_KIND
    label = "OscillatorNetwork"

    def __init__(
        self,
        config: Optional[NetworkConfig] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self.config = config or NetworkConfig()
        self.rng = rng if rng is not None else np.random.default_rng(self.config.seed)

        self.oscillators: Dict[str, PhaseOscillator] = {}
        self.time: float = 0.0
        self.history: List[NetworkSnapshot] = []

        # Coherence samples restored from storage (no phase snapshot attached)
        self._restored_coherence: List[float] = []

    # ── Properties ───────────────────────────────────────────────────────────

    @property
    def n(self) -> int:
        return len(self.oscillators)

    @property
    def coupling_strength(self) -> float:
        return self.config.coupling_strength

    @property
    def coherence(self) -> float:
        return self.compute_coherence()

    # ── Membership ───────────────────────────────────────────────────────────

    def add_salesperson(
        self,
        id: str,
        name: str,
        skill_level: float = 0.7,
        natural_frequency: float = 1.0,
        phase: Optional[float] = None,
    ) -> PhaseOscillator:
        """Add a salesperson with a random initial phase unless one is given."""
        if phase is None:
            phase = float(self.rng.uniform(0, TWO_PI))
        osc = PhaseOscillator(
            id=id,
            name=name,
            phase=phase,
            natural_frequency=natural_frequency,
            skill_level=skill_level,
        )
        self._add_oscillator(osc)
        return osc

    def remove_salesperson(self, id: str) -> None:
        self.oscillators.pop(id, None)

    def get_oscillator(self, id: str) -> Optional[PhaseOscillator]:
        return self.oscillators.get(id)

    def get_all_oscillators(self) -> List[PhaseOscillator]:
        return list(self.oscillators.values())

    # ── Dynamics ─────────────────────────────────────────────────────────────

    def update(self, dt: Optional[float] = None) -> None:
        """
        Advance the network by one Euler step.

        dtheta_i/dt = omega_i + (K/N) * sum_j w_ij sin(theta_j - theta_i)
        with w_ij = 1 - |skill_i - skill_j|. The rate is damped by
        1 / (1 + 0.1 * active_deals). All phases read the same pre-step
        snapshot.
        """
        if dt is None:
            dt = self.config.default_dt
        if dt < 0:
            raise ValueError(f"dt must be non-negative, got {dt}")

        n = self.n
        if n == 0:
            return

        oscs = list(self.oscillators.values())
        phases = np.array([o.phase for o in oscs])
        skills = np.array([o.skill_level for o in oscs])
        omegas = np.array([o.natural_frequency for o in oscs])
        deals = np.array([o.active_deals for o in oscs], dtype=float)

        # Phase differences: theta_j - theta_i
        phase_diff = phases[np.newaxis, :] - phases[:, np.newaxis]

        # Skill-similarity weights, no self-coupling
        weights = 1.0 - np.abs(skills[:, np.newaxis] - skills[np.newaxis, :])
        np.fill_diagonal(weights, 0.0)

        coupling = (self.coupling_strength / n) * np.sum(weights * np.sin(phase_diff), axis=1)

        workload_factor = 1.0 / (1.0 + self.config.workload_damping * deals)

        dtheta = (omegas + coupling) * workload_factor
        new_phases = wrap_phases(phases + dt * dtheta)

        for osc, phase in zip(oscs, new_phases):
            osc.phase = float(phase)

        self.time += dt
        self._record_snapshot()

    def compute_coherence(self) -> float:
        """Team synchronization in [0, 1]; 0 for an empty team."""
        return order_parameter(o.phase for o in self.oscillators.values())

    def mean_phase(self) -> float:
        return wrap_phase(circular_mean(o.phase for o in self.oscillators.values()))

    # ── Queries ──────────────────────────────────────────────────────────────

    def assign_new_lead(self, lead_priority: float = 0.5) -> Optional[str]:
        """
        Pick the salesperson best placed to take a new lead.

        score = 0.4 cos(phase) + 0.4 / (1 + active_deals)
                + 0.2 (1 - |skill - priority|)
        """
        best_id: Optional[str] = None
        best_score = -np.inf

        for id, osc in self.oscillators.items():
            phase_score = np.cos(osc.phase)
            workload_score = 1.0 / (1.0 + osc.active_deals)
            skill_match = 1.0 - abs(osc.skill_level - lead_priority)
            score = 0.4 * phase_score + 0.4 * workload_score + 0.2 * skill_match

            # Strict comparison keeps the earliest id on ties
            if score > best_score:
                best_score = score
                best_id = id

        return best_id

    def detect_bottlenecks(self) -> List[Bottleneck]:
        """Salespeople more than pi/3 away from the team's mean phase."""
        if self.n == 0:
            return []

        cfg = self.config
        mean = circular_mean(o.phase for o in self.oscillators.values())

        bottlenecks = []
        for id, osc in self.oscillators.items():
            distance = circular_distance(osc.phase, mean)
            if distance > cfg.bottleneck_distance:
                bottlenecks.append(
                    Bottleneck(
                        salesperson_id=id,
                        name=osc.name,
                        phase_difference=distance,
                        active_deals=osc.active_deals,
                        issue=self._diagnose_issue(osc, distance),
                    )
                )
        return bottlenecks

    def recommend_mentoring(self) -> List[MentoringRecommendation]:
        """Mentor/mentee pairs: mentor slightly ahead in phase and clearly more skilled."""
        if self.n < 2:
            return []

        cfg = self.config
        recommendations = []

        for mentor in self.oscillators.values():
            for mentee in self.oscillators.values():
                if mentor.id == mentee.id:
                    continue

                lead = phase_lead(mentor.phase, mentee.phase)
                skill_gap = mentor.skill_level - mentee.skill_level

                if cfg.mentor_min_lead < lead < cfg.mentor_max_lead and skill_gap > cfg.mentor_min_skill_gap:
                    recommendations.append(
                        MentoringRecommendation(
                            mentor_id=mentor.id,
                            mentor_name=mentor.name,
                            mentee_id=mentee.id,
                            mentee_name=mentee.name,
                            skill_gap=skill_gap,
                            phase_lead=lead,
                            recommendation=f"{mentor.name} can help {mentee.name} move deals faster",
                        )
                    )

        # Stable sort: equal gaps keep scan order
        recommendations.sort(key=lambda r: r.skill_gap, reverse=True)
        return recommendations[: cfg.max_mentoring_pairs]

    def get_team_status(self) -> TeamStatus:
        coherence = self.compute_coherence()
        return TeamStatus(
            coherence=coherence,
            status=coherence_status(coherence),
            total_salespeople=self.n,
            bottlenecks=self.detect_bottlenecks(),
            mentoring_opportunities=self.recommend_mentoring(),
            team_members=[
                TeamMember(
                    id=osc.id,
                    name=osc.name,
                    phase=osc.phase,
                    active_deals=osc.active_deals,
                    deals_today=osc.deals_closed_today,
                    skill_level=osc.skill_level,
                    status=self._member_status(osc),
                )
                for osc in self.oscillators.values()
            ],
        )

    def coherence_history(self) -> List[float]:
        """Coherence samples, oldest first, including any restored from storage."""
        live = [h.coherence for h in self.history]
        return (self._restored_coherence + live)[-self.config.history_length:]

    # ── Event Hooks ──────────────────────────────────────────────────────────

    def update_workload(self, salesperson_id: str, active_deals: int) -> None:
        osc = self.oscillators.get(salesperson_id)
        if osc:
            osc.active_deals = max(int(active_deals), 0)

    def record_deal_closed(self, salesperson_id: str) -> None:
        """A closed deal completes a quarter cycle and frees one deal slot."""
        osc = self.oscillators.get(salesperson_id)
        if osc:
            osc.deals_closed_today += 1
            osc.active_deals = max(0, osc.active_deals - 1)
            osc.advance(np.pi / 2)

    def reset_daily_stats(self) -> None:
        for osc in self.oscillators.values():
            osc.deals_closed_today = 0

    def reset(self) -> None:
        """Back to a fresh day: random phases, no workload, empty history."""
        for osc in self.oscillators.values():
            osc.set_phase(float(self.rng.uniform(0, TWO_PI)))
            osc.active_deals = 0
            osc.deals_closed_today = 0
        self.time = 0.0
        self.history = []
        self._restored_coherence = []

    # ── Persistence ──────────────────────────────────────────────────────────

    def get_state(self) -> dict:
        return {
            "oscillators": {id: osc.to_dict() for id, osc in self.oscillators.items()},
            "time": self.time,
            "coherence_history": self.coherence_history()[-self.config.saved_coherence_samples:],
        }

    def restore_state(self, state: dict) -> None:
        """Replace live state with a saved dict. Missing fields fall back to defaults."""
        oscillators = {
            str(id): self._oscillator_from_dict({"id": id, **d})
            for id, d in state.get("oscillators", {}).items()
        }
        time = float(state.get("time", 0.0))
        coherence = [float(c) for c in state.get("coherence_history", [])]

        self.oscillators = oscillators
        self.time = time
        self.history = []
        self._restored_coherence = coherence

    def save_state(self, storage: StoragePort, key: Optional[str] = None) -> None:
        key = key or self.state_kind
        save_state(storage, key, self.state_kind, self.get_state())
        logger.debug(f"[{self.label}] Saved state to '{key}'")

    def load_state(self, storage: StoragePort, key: Optional[str] = None) -> bool:
        """Restore from storage. Returns False (keeping defaults) on any failure."""
        return restore_from_storage(self, storage, key or self.state_kind, self.state_kind, self.label)

    # ── Internal ─────────────────────────────────────────────────────────────

    def _add_oscillator(self, osc: PhaseOscillator) -> None:
        if osc.id in self.oscillators:
            raise ValueError(f"Duplicate oscillator id: {osc.id}")
        self.oscillators[osc.id] = osc

    def _oscillator_from_dict(self, d: dict) -> PhaseOscillator:
        return PhaseOscillator.from_dict(d)

    def _record_snapshot(self) -> None:
        self.history.append(
            NetworkSnapshot(
                time=self.time,
                coherence=self.compute_coherence(),
                phases={id: osc.phase for id, osc in self.oscillators.items()},
            )
        )
        if len(self.history) > self.config.history_length:
            self.history = self.history[-self.config.history_length:]

    def _diagnose_issue(self, osc: PhaseOscillator, distance: float) -> str:
        cfg = self.config
        if osc.active_deals > cfg.overload_deals:
            return "Overloaded - too many active deals"
        if osc.deals_closed_today == 0 and self.time > cfg.idle_after_time:
            return "Slow day - no deals closed yet"
        if distance > cfg.far_behind_distance:
            return "Significantly behind team rhythm"
        return "Slightly out of sync with team"

    def _member_status(self, osc: PhaseOscillator) -> str:
        if osc.active_deals > self.config.overload_deals:
            return "overloaded"
        if osc.active_deals == 0 and osc.deals_closed_today == 0:
            return "idle"
        if osc.deals_closed_today >= 2:
            return "crushing_it"
        return "normal"
