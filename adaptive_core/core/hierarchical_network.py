# ═══════════════════════════════════════════════════════════════════════════════
# HIERARCHICAL OSCILLATOR NETWORK
# Reporting graph, performance metrics and team rollups on top of the network
# ═══════════════════════════════════════════════════════════════════════════════


"""
Every staff member is still one oscillator in the coordination network, but
now also a node in the reporting graph. The graph is a single adjacency
structure: the oscillator dict is the arena, each node holds its manager's
id and the ordered ids of its direct reports. No node ever holds another
node object, so there are no reference cycles to manage.

Managers carry team rollups (deals, revenue, satisfaction) computed from
direct reports only, recomputed eagerly whenever a report's metrics change.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

import numpy as np
from loguru import logger

from adaptive_core.core.oscillator_network import NetworkConfig, OscillatorNetwork
from adaptive_core.core.phase_oscillator import (
    PhaseOscillator,
    order_parameter,
    oscillator_kwargs,
)
from adaptive_core.core.role_hierarchy import (
    ROLE_METADATA,
    RoleLevel,
    RoleSettings,
    UserRole,
    get_default_role_settings,
)


WORKING_DAYS_PER_MONTH = 20
DEFAULT_SHOW_TO_SOLD_RATE = 20.0   # %
TARGET_PERFORMANCE_SCORE = 85.0


@dataclass
class PerformanceMetrics:
    # Sales
    deals_this_month: float = 0
    deals_this_quarter: float = 0
    revenue_this_month: float = 0.0
    gross_profit_this_month: float = 0.0

    # Conversion funnel
    leads_received: int = 0
    appointments_set: int = 0
    appointments_shown: int = 0
    deals_closed: int = 0

    # Quality
    avg_customer_satisfaction: float = 0.0
    survey_response_rate: float = 0.0
    repeat_customer_rate: float = 0.0

    # Activity
    calls_made: int = 0
    emails_sent: int = 0
    test_drives_given: int = 0

    # Time (minutes)
    avg_deal_time: float = 0.0
    avg_response_time: float = 0.0

    # Team rollups (nodes with reports only)
    team_deals: Optional[float] = None
    team_revenue: Optional[float] = None
    team_avg_satisfaction: Optional[float] = None


@dataclass
class RoleSpecificState:
    """Daily counters. Counters that do not apply to the role stay None."""
    # BDC
    active_leads: Optional[int] = None
    appointments_today: Optional[int] = None

    # Sales
    test_drives_today: Optional[int] = None
    presentations_today: Optional[int] = None

    # Managers
    approvals_today: Optional[int] = None
    coaching_sessions: Optional[int] = None
    team_meetings: Optional[int] = None

    def reset(self) -> None:
        for f in fields(self):
            if getattr(self, f.name) is not None:
                setattr(self, f.name, 0)


def initial_role_state(role: UserRole) -> RoleSpecificState:
    if role == UserRole.BDC:
        return RoleSpecificState(active_leads=0, appointments_today=0)
    if role in (UserRole.SALES, UserRole.SENIOR_SALES):
        return RoleSpecificState(test_drives_today=0, presentations_today=0)
    if role in (UserRole.SALES_MANAGER, UserRole.BDC_MANAGER):
        return RoleSpecificState(approvals_today=0, coaching_sessions=0, team_meetings=0)
    return RoleSpecificState()


@dataclass
class HierarchicalOscillator(PhaseOscillator):
    role: UserRole = UserRole.SALES
    role_level: RoleLevel = RoleLevel.ASSOCIATE
    manager_id: Optional[str] = None
    subordinate_ids: List[str] = field(default_factory=list)
    settings: RoleSettings = field(default_factory=RoleSettings)
    metrics: PerformanceMetrics = field(default_factory=PerformanceMetrics)
    role_state: RoleSpecificState = field(default_factory=RoleSpecificState)

    @property
    def is_management(self) -> bool:
        return ROLE_METADATA[self.role].is_management

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d.update(
            {
                "role": self.role.value,
                "role_level": self.role_level.value,
                "manager_id": self.manager_id,
                "subordinate_ids": list(self.subordinate_ids),
                "settings": self.settings.to_dict(),
                "metrics": asdict(self.metrics),
                "role_state": asdict(self.role_state),
            }
        )
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "HierarchicalOscillator":
        role = UserRole(d.get("role", UserRole.SALES.value))
        level = d.get("role_level")
        role_state = d.get("role_state")
        return cls(
            **oscillator_kwargs(d),
            role=role,
            role_level=RoleLevel(level) if level is not None else ROLE_METADATA[role].level,
            manager_id=d.get("manager_id"),
            subordinate_ids=[str(s) for s in d.get("subordinate_ids", [])],
            settings=(
                RoleSettings.from_dict(d["settings"])
                if d.get("settings") is not None
                else get_default_role_settings(role)
            ),
            metrics=PerformanceMetrics(**_known_fields(PerformanceMetrics, d.get("metrics") or {})),
            role_state=(
                RoleSpecificState(**_known_fields(RoleSpecificState, role_state))
                if role_state is not None
                else initial_role_state(role)
            ),
        )


def _known_fields(cls: type, d: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in d.items() if k in names}


# ── Report Dataclasses ───────────────────────────────────────────────────────


@dataclass
class PerformerSummary:
    id: str
    name: str
    score: float
    issues: List[str] = field(default_factory=list)


@dataclass
class TeamPerformance:
    team_id: str
    manager_id: str
    manager_name: str
    role: UserRole
    team_size: int
    active_members: int
    team_coherence: float
    total_deals: float
    total_revenue: float
    avg_performance_score: float
    bottlenecks: int
    top_performers: List[PerformerSummary] = field(default_factory=list)
    underperformers: List[PerformerSummary] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)


@dataclass
class Optimization:
    category: str
    current: float
    target: float
    improvement: str
    priority: str            # high | medium | low
    estimated_impact: float  # % improvement


@dataclass
class ActionItem:
    action: str
    deadline: str
    owner: str


@dataclass
class PerformanceOptimization:
    oscillator_id: str
    name: str
    role: UserRole
    current_score: float
    target_score: float
    gap: float
    optimizations: List[Optimization] = field(default_factory=list)
    action_items: List[ActionItem] = field(default_factory=list)


_PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}


class HierarchicalOscillatorNetwork(OscillatorNetwork):
    """
    Coordination network with a reporting graph.

    All graph mutations go through add_user / remove_user / reassign_manager
    so that manager_id and subordinate_ids always agree.
    """

    state_kind = "hierarchy"
    label = "HierarchicalOscillatorNetwork"

    def __init__(
        self,
        config: Optional[NetworkConfig] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        super().__init__(config, rng)
        self.oscillators: Dict[str, HierarchicalOscillator] = {}

    # ── Membership ───────────────────────────────────────────────────────────

    def add_user(
        self,
        id: str,
        name: str,
        role: UserRole,
        settings: Optional[RoleSettings] = None,
        manager_id: Optional[str] = None,
        phase: Optional[float] = None,
    ) -> HierarchicalOscillator:
        """Onboard a staff member under an existing manager (or at the top)."""
        if manager_id is not None:
            if manager_id == id:
                raise ValueError(f"{id} cannot manage themselves")
            if manager_id not in self.oscillators:
                raise KeyError(f"Unknown manager: {manager_id}")

        settings = settings or get_default_role_settings(role)
        if phase is None:
            phase = float(self.rng.uniform(0, 2 * np.pi))

        node = HierarchicalOscillator(
            id=id,
            name=name,
            phase=phase,
            natural_frequency=settings.intelligence.natural_frequency,
            skill_level=settings.intelligence.skill_level,
            role=role,
            role_level=ROLE_METADATA[role].level,
            manager_id=manager_id,
            settings=settings,
            role_state=initial_role_state(role),
        )
        self._add_oscillator(node)
        if node.is_management:
            self._update_team_metrics(id)

        if manager_id is not None:
            self._attach(manager_id, id)
            self._update_team_metrics(manager_id)

        return node

    def add_salesperson(
        self,
        id: str,
        name: str,
        skill_level: float = 0.7,
        natural_frequency: float = 1.0,
        phase: Optional[float] = None,
    ) -> HierarchicalOscillator:
        settings = get_default_role_settings(UserRole.SALES)
        settings.intelligence.skill_level = skill_level
        settings.intelligence.natural_frequency = natural_frequency
        return self.add_user(id, name, UserRole.SALES, settings=settings, phase=phase)

    def remove_user(self, id: str) -> None:
        """
        Offboard a staff member.

        Direct reports are grafted onto the removed node's own manager (or
        left without a manager at the top of the graph), so everyone who was
        reachable from that manager still is.
        """
        node = self.oscillators.get(id)
        if node is None:
            return

        grandparent_id = node.manager_id
        if grandparent_id is not None:
            self._detach(grandparent_id, id)

        for sub_id in list(node.subordinate_ids):
            sub = self.oscillators.get(sub_id)
            if sub is None:
                continue
            sub.manager_id = grandparent_id
            if grandparent_id is not None:
                self._attach(grandparent_id, sub_id)

        node.subordinate_ids = []
        super().remove_salesperson(id)

        if grandparent_id is not None:
            self._update_team_metrics(grandparent_id)

        logger.debug(
            f"[{self.label}] Removed {id}; reports moved to {grandparent_id or 'top level'}"
        )

    def remove_salesperson(self, id: str) -> None:
        self.remove_user(id)

    def reassign_manager(self, id: str, manager_id: Optional[str]) -> None:
        """Move a node (with its whole subtree) under a different manager."""
        node = self.oscillators[id]
        if manager_id is not None:
            if manager_id not in self.oscillators:
                raise KeyError(f"Unknown manager: {manager_id}")
            if manager_id == id or id in self._chain_of_command(manager_id):
                raise ValueError(f"Moving {id} under {manager_id} would create a cycle")

        old_manager = node.manager_id
        if old_manager == manager_id:
            return
        if old_manager is not None:
            self._detach(old_manager, id)
            self._update_team_metrics(old_manager)

        node.manager_id = manager_id
        if manager_id is not None:
            self._attach(manager_id, id)
            self._update_team_metrics(manager_id)

    def get_hierarchical_oscillator(self, id: str) -> Optional[HierarchicalOscillator]:
        return self.oscillators.get(id)

    def get_all_hierarchical_oscillators(self) -> List[HierarchicalOscillator]:
        return list(self.oscillators.values())

    def team_of(self, manager_id: str) -> List[str]:
        """Direct reports of a manager, in the order they joined the team."""
        node = self.oscillators.get(manager_id)
        return list(node.subordinate_ids) if node else []

    # ── Metrics ──────────────────────────────────────────────────────────────

    def update_performance_metrics(
        self, id: str, metrics: Optional[Dict[str, Any]] = None, **kwargs: Any
    ) -> None:
        """Merge metric values into a node and refresh the affected team rollups."""
        node = self.oscillators.get(id)
        if node is None:
            return

        updates = dict(metrics or {}, **kwargs)
        known = {f.name for f in fields(PerformanceMetrics)}
        unknown = set(updates) - known
        if unknown:
            raise ValueError(f"Unknown performance metrics: {sorted(unknown)}")

        for name, value in updates.items():
            setattr(node.metrics, name, value)

        if node.subordinate_ids or node.is_management:
            self._update_team_metrics(id)
        if node.manager_id is not None:
            self._update_team_metrics(node.manager_id)

    def update_role_state(self, id: str, **counters: int) -> None:
        node = self.oscillators.get(id)
        if node is None:
            return
        known = {f.name for f in fields(RoleSpecificState)}
        unknown = set(counters) - known
        if unknown:
            raise ValueError(f"Unknown role counters: {sorted(unknown)}")
        for name, value in counters.items():
            setattr(node.role_state, name, value)

    def reset_daily_stats(self) -> None:
        super().reset_daily_stats()
        for node in self.oscillators.values():
            node.role_state.reset()

    def calculate_performance_score(self, node: HierarchicalOscillator) -> float:
        """
        Weighted attainment against role targets, as a percentage.

        deals 30, revenue 25, satisfaction 20, conversion 15, activity 10.
        A component whose target is unset drops out of both numerator and
        weight total. With nothing to measure the score is a neutral 50.
        """
        targets = node.settings.performance_targets
        m = node.metrics

        score = 0.0
        weight = 0.0

        if _positive(targets.monthly_deals_target):
            score += (m.deals_this_month / targets.monthly_deals_target) * 30
            weight += 30

        if _positive(targets.monthly_revenue_target):
            score += (m.revenue_this_month / targets.monthly_revenue_target) * 25
            weight += 25

        if _positive(targets.customer_satisfaction_target):
            score += (m.avg_customer_satisfaction / targets.customer_satisfaction_target) * 20
            weight += 20

        if m.appointments_shown > 0:
            conversion_rate = m.deals_closed / m.appointments_shown
            target_rate = _show_to_sold(targets.show_to_sold_rate) / 100
            score += (conversion_rate / target_rate) * 15
            weight += 15

        if _positive(targets.daily_calls_target):
            calls_per_day = m.calls_made / WORKING_DAYS_PER_MONTH
            score += (calls_per_day / targets.daily_calls_target) * 10
            weight += 10

        return (score / weight) * 100 if weight > 0 else 50.0

    def identify_performance_issues(self, node: HierarchicalOscillator) -> List[str]:
        targets = node.settings.performance_targets
        m = node.metrics
        issues = []

        if _positive(targets.monthly_deals_target) and m.deals_this_month < targets.monthly_deals_target * 0.5:
            issues.append("Low deal volume - 50% below target")

        if (
            _positive(targets.customer_satisfaction_target)
            and m.avg_customer_satisfaction < targets.customer_satisfaction_target * 0.8
        ):
            issues.append("Low customer satisfaction")

        if m.appointments_shown > 5 and m.deals_closed / m.appointments_shown < 0.1:
            issues.append("Poor conversion rate (<10%)")

        if node.active_deals > 10:
            issues.append("Overloaded - too many active deals")

        if node.deals_closed_today == 0 and node.active_deals == 0:
            issues.append("Idle - no activity today")

        return issues

    # ── Team Reports ─────────────────────────────────────────────────────────

    def generate_team_recommendations(
        self,
        manager: HierarchicalOscillator,
        subordinates: List[HierarchicalOscillator],
    ) -> List[str]:
        """Independent rules over a manager's direct reports."""
        recommendations = []

        if subordinates:
            workloads = [s.active_deals for s in subordinates]
            avg_workload = sum(workloads) / len(workloads)
            if max(workloads) > avg_workload * 1.5:
                recommendations.append("Workload imbalance - redistribute leads to balance team")

            if order_parameter(s.phase for s in subordinates) < 0.5:
                recommendations.append("Low team synchronization - schedule team meeting")

            skills = [s.skill_level for s in subordinates]
            if max(skills) - min(skills) > 0.3:
                recommendations.append("Large skill gap - implement mentoring program")

        team_target = manager.settings.performance_targets.monthly_deals_target or 0
        team_actual = manager.metrics.team_deals or 0
        if team_actual < team_target * 0.8:
            recommendations.append("Team 20% below target - review processes and motivation")

        return recommendations

    def get_team_performance(self, manager_id: str) -> Optional[TeamPerformance]:
        manager = self.oscillators.get(manager_id)
        if manager is None or not manager.is_management:
            return None

        subordinates = self._subordinates(manager)
        scored = [(s, self.calculate_performance_score(s)) for s in subordinates]
        scores = [score for _, score in scored]

        best = max(scores) if scores else 0.0
        avg_score = sum(scores) / len(scores) if scores else 0.0

        top = sorted(
            (PerformerSummary(id=s.id, name=s.name, score=score) for s, score in scored if score >= best * 0.8),
            key=lambda p: p.score,
            reverse=True,
        )[:3]

        under = sorted(
            (
                PerformerSummary(
                    id=s.id,
                    name=s.name,
                    score=score,
                    issues=self.identify_performance_issues(s),
                )
                for s, score in scored
                if score < best * 0.5
            ),
            key=lambda p: p.score,
        )[:3]

        return TeamPerformance(
            team_id=manager_id,
            manager_id=manager_id,
            manager_name=manager.name,
            role=manager.role,
            team_size=len(subordinates),
            active_members=sum(1 for s in subordinates if s.active_deals > 0),
            team_coherence=order_parameter(s.phase for s in subordinates),
            total_deals=manager.metrics.team_deals or 0,
            total_revenue=manager.metrics.team_revenue or 0.0,
            avg_performance_score=avg_score,
            bottlenecks=len(under),
            top_performers=top,
            underperformers=under,
            recommendations=self.generate_team_recommendations(manager, subordinates),
        )

    def get_performance_optimization(
        self, id: str, today: Optional[date] = None
    ) -> Optional[PerformanceOptimization]:
        """Prioritized improvement plan with weekly-staggered action items."""
        node = self.oscillators.get(id)
        if node is None or not node.settings.intelligence.enable_performance_optimization:
            return None

        today = today or date.today()
        current = self.calculate_performance_score(node)
        targets = node.settings.performance_targets
        m = node.metrics
        optimizations: List[Optimization] = []

        if _positive(targets.monthly_deals_target):
            if m.deals_this_month / targets.monthly_deals_target * 100 < 80:
                optimizations.append(
                    Optimization(
                        category="Deal Volume",
                        current=m.deals_this_month,
                        target=targets.monthly_deals_target,
                        improvement=f"Increase by {targets.monthly_deals_target - m.deals_this_month:g} deals",
                        priority="high",
                        estimated_impact=30,
                    )
                )

        if m.appointments_shown > 0:
            conversion = m.deals_closed / m.appointments_shown * 100
            target_rate = _show_to_sold(targets.show_to_sold_rate)
            if conversion < target_rate * 0.8:
                optimizations.append(
                    Optimization(
                        category="Conversion Rate",
                        current=conversion,
                        target=target_rate,
                        improvement="Improve closing techniques and follow-up",
                        priority="high",
                        estimated_impact=25,
                    )
                )

        if (
            _positive(targets.customer_satisfaction_target)
            and m.avg_customer_satisfaction < targets.customer_satisfaction_target
        ):
            optimizations.append(
                Optimization(
                    category="Customer Satisfaction",
                    current=m.avg_customer_satisfaction,
                    target=targets.customer_satisfaction_target,
                    improvement="Focus on customer experience and follow-up",
                    priority="medium",
                    estimated_impact=20,
                )
            )

        if _positive(targets.daily_calls_target):
            calls_per_day = m.calls_made / WORKING_DAYS_PER_MONTH
            if calls_per_day < targets.daily_calls_target * 0.8:
                optimizations.append(
                    Optimization(
                        category="Activity Level",
                        current=calls_per_day,
                        target=targets.daily_calls_target,
                        improvement="Increase daily call activity",
                        priority="medium",
                        estimated_impact=15,
                    )
                )

        optimizations.sort(key=lambda o: (_PRIORITY_ORDER[o.priority], -o.estimated_impact))

        action_items = [
            ActionItem(
                action=opt.improvement,
                deadline=(today + timedelta(days=7 * (idx + 1))).isoformat(),
                owner=node.name,
            )
            for idx, opt in enumerate(optimizations[:3])
        ]

        return PerformanceOptimization(
            oscillator_id=id,
            name=node.name,
            role=node.role,
            current_score=current,
            target_score=TARGET_PERFORMANCE_SCORE,
            gap=TARGET_PERFORMANCE_SCORE - current,
            optimizations=optimizations,
            action_items=action_items,
        )

    # ── Persistence ──────────────────────────────────────────────────────────

    def restore_state(self, state: dict) -> None:
        super().restore_state(state)
        self._repair_graph()

    def _oscillator_from_dict(self, d: dict) -> HierarchicalOscillator:
        return HierarchicalOscillator.from_dict(d)

    def _repair_graph(self) -> None:
        """
        Make manager_id the source of truth after a load.

        Dangling manager ids are cleared; each subordinate list keeps its
        saved order, drops ids that no longer report there and appends any
        report that was missing.
        """
        for node in self.oscillators.values():
            if node.manager_id is not None and node.manager_id not in self.oscillators:
                node.manager_id = None

        reports: Dict[str, List[str]] = {id: [] for id in self.oscillators}
        for node in self.oscillators.values():
            if node.manager_id is not None:
                reports[node.manager_id].append(node.id)

        for id, node in self.oscillators.items():
            actual = reports[id]
            ordered = [s for s in node.subordinate_ids if s in actual]
            ordered += [s for s in actual if s not in ordered]
            node.subordinate_ids = ordered

    # ── Internal ─────────────────────────────────────────────────────────────

    def _attach(self, manager_id: str, sub_id: str) -> None:
        manager = self.oscillators[manager_id]
        if sub_id not in manager.subordinate_ids:
            manager.subordinate_ids.append(sub_id)

    def _detach(self, manager_id: str, sub_id: str) -> None:
        manager = self.oscillators.get(manager_id)
        if manager is not None and sub_id in manager.subordinate_ids:
            manager.subordinate_ids.remove(sub_id)

    def _subordinates(self, manager: HierarchicalOscillator) -> List[HierarchicalOscillator]:
        return [self.oscillators[s] for s in manager.subordinate_ids if s in self.oscillators]

    def _chain_of_command(self, id: str) -> List[str]:
        """Ids from id's manager up to the top of the graph."""
        chain = []
        current = self.oscillators[id].manager_id
        while current is not None and current not in chain:
            chain.append(current)
            current = self.oscillators[current].manager_id
        return chain

    def _update_team_metrics(self, manager_id: str) -> None:
        """Rollups from direct reports only."""
        manager = self.oscillators.get(manager_id)
        if manager is None:
            return

        subordinates = self._subordinates(manager)
        if not subordinates:
            if manager.is_management:
                manager.metrics.team_deals = 0
                manager.metrics.team_revenue = 0.0
                manager.metrics.team_avg_satisfaction = 0.0
            else:
                manager.metrics.team_deals = None
                manager.metrics.team_revenue = None
                manager.metrics.team_avg_satisfaction = None
            return

        manager.metrics.team_deals = sum(s.metrics.deals_this_month for s in subordinates)
        manager.metrics.team_revenue = sum(s.metrics.revenue_this_month for s in subordinates)
        manager.metrics.team_avg_satisfaction = (
            sum(s.metrics.avg_customer_satisfaction for s in subordinates) / len(subordinates)
        )


def _positive(value: Optional[float]) -> bool:
    return value is not None and value > 0


def _show_to_sold(rate: Optional[float]) -> float:
    return rate if _positive(rate) else DEFAULT_SHOW_TO_SOLD_RATE
