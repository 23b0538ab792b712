# ═══════════════════════════════════════════════════════════════════════════════
# STRATEGY ENGINE
# Thompson sampling over deal-structuring strategies
# ═══════════════════════════════════════════════════════════════════════════════


"""
Each deal-structuring strategy is one arm of a multi-armed bandit with a
Beta-Bernoulli posterior Beta(wins + 1, trials - wins + 1). Counters start at
wins = trials = 1.

Selection filters the catalogue down to strategies whose context rules admit
the deal, draws one posterior sample per candidate and takes the largest.
Arms we know little about produce wide samples and still get explored; arms
that keep winning get exploited. Every recorded outcome is the only learning
signal, and there is no retraining step.

Usage:
    engine = StrategyEngine(storage=InMemoryStorage())
    rec = engine.get_recommendation(DealContext(32_000, 3_000, 60, customer_fico=700))
    ...
    engine.record_outcome(rec.strategy_key, success=True)
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple, Union

import numpy as np
from loguru import logger

from adaptive_core.core.persistence import restore_from_storage, save_state
from adaptive_core.core.sampling import sample_beta, wilson_interval
from adaptive_core.core.storage import DebouncedWriter, StoragePort


STATE_KIND = "strategy_engine"


@dataclass
class StrategyEngineConfig:
    z: float = 1.96                 # Wilson interval z (~95%)
    save_cooldown: float = 5.0      # Seconds between throttled writes
    state_key: str = "strategy_engine"
    seed: Optional[int] = None


@dataclass
class StrategyContextRules:
    """Admissibility ranges. None means the bound is not checked."""
    min_fico: Optional[float] = None
    max_fico: Optional[float] = None
    min_down_percent: Optional[float] = None
    max_down_percent: Optional[float] = None
    min_ltv: Optional[float] = None
    max_ltv: Optional[float] = None


@dataclass
class Strategy:
    key: str
    name: str
    description: str
    wins: int = 1
    trials: int = 1
    context_rules: StrategyContextRules = field(default_factory=StrategyContextRules)

    @property
    def alpha(self) -> float:
        return self.wins + 1

    @property
    def beta(self) -> float:
        return self.trials - self.wins + 1

    @property
    def success_rate(self) -> float:
        return self.wins / self.trials if self.trials > 0 else 0.0


@dataclass
class DealContext:
    vehicle_price: float
    down_payment: float
    term_months: int
    trade_value: Optional[float] = None
    customer_fico: Optional[float] = None
    loan_to_value: Optional[float] = None   # %

    @property
    def down_percent(self) -> float:
        if self.vehicle_price <= 0:
            return 0.0
        return self.down_payment / self.vehicle_price * 100


@dataclass
class StrategyAction:
    action: str
    reason: str
    expected_impact: str
    from_value: Optional[Union[float, str]] = None
    to_value: Optional[Union[float, str]] = None


@dataclass
class StrategyPerformance:
    name: str
    success_rate: float                        # Fraction, 0-1
    wins: int
    trials: int
    confidence: float                          # 1 - Wilson interval width
    confidence_interval: Tuple[float, float]


@dataclass
class StrategyRecommendation:
    strategy: str
    strategy_key: str
    confidence: float
    description: str
    recommendations: List[StrategyAction] = field(default_factory=list)
    all_strategies: Dict[str, StrategyPerformance] = field(default_factory=dict)


@dataclass
class PerformanceReport:
    strategies: Dict[str, StrategyPerformance]
    best_strategy: Optional[str]
    total_trials: int
    total_wins: int
    overall_success_rate: float
    last_updated: str


def default_strategies() -> List[Strategy]:
    """The built-in dealership catalogue, all at the Laplace starting point."""
    return [
        Strategy(
            key="high_down_payment",
            name="Maximize Down Payment",
            description="Push for 20%+ down payment to improve approval odds and rates",
            context_rules=StrategyContextRules(min_down_percent=0, max_ltv=120),
        ),
        Strategy(
            key="extend_term",
            name="Extend Term",
            description="Use longer terms (72-84 months) for lower monthly payment",
            context_rules=StrategyContextRules(max_fico=680),
        ),
        Strategy(
            key="optimize_rate",
            name="Optimize Interest Rate",
            description="Focus on securing best available interest rate",
            context_rules=StrategyContextRules(min_fico=680),
        ),
        Strategy(
            key="maximize_trade",
            name="Maximize Trade Value",
            description="Push trade-in value to reduce amount financed",
        ),
        Strategy(
            key="reduce_vehicle_price",
            name="Reduce Vehicle Price",
            description="Guide customer toward lower-priced vehicles for better structure",
            context_rules=StrategyContextRules(max_fico=640),
        ),
        Strategy(
            key="add_cosigner",
            name="Add Co-Signer",
            description="Recommend co-signer to improve approval odds",
            context_rules=StrategyContextRules(max_fico=640, max_down_percent=15),
        ),
        Strategy(
            key="balanced_structure",
            name="Balanced Structure",
            description="Use moderate down, term, and rate for stable deal",
            context_rules=StrategyContextRules(min_fico=640, max_fico=720),
        ),
    ]


class StrategyEngine:
    """
    Beta-Bernoulli bandit over a fixed strategy catalogue.

    Strategies live in a key -> Strategy dict; only their counters change
    after construction. When a storage port is given, outcomes mark a
    DebouncedWriter dirty; the owner flushes it from its own loop.
    """

    label = "StrategyEngine"

    def __init__(
        self,
        config: Optional[StrategyEngineConfig] = None,
        strategies: Optional[List[Strategy]] = None,
        rng: Optional[np.random.Generator] = None,
        storage: Optional[StoragePort] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or StrategyEngineConfig()
        self.rng = rng if rng is not None else np.random.default_rng(self.config.seed)

        catalogue = strategies if strategies is not None else default_strategies()
        if not catalogue:
            raise ValueError("StrategyEngine needs at least one strategy")
        self.strategies: Dict[str, Strategy] = {}
        for s in catalogue:
            if s.key in self.strategies:
                raise ValueError(f"Duplicate strategy key: {s.key}")
            self.strategies[s.key] = s

        self.storage = storage
        self.writer: Optional[DebouncedWriter] = None
        if storage is not None:
            self.writer = DebouncedWriter(
                lambda: self.save_state(storage),
                cooldown=self.config.save_cooldown,
                clock=clock,
                name=self.label,
            )

    # ── Selection ────────────────────────────────────────────────────────────

    def matches_context(self, strategy: Strategy, context: DealContext) -> bool:
        """
        True when every applicable rule admits the context.

        FICO and LTV bounds only apply when the context carries a value.
        Down-payment bounds always apply.
        """
        rules = strategy.context_rules

        fico = context.customer_fico
        if fico is not None:
            if rules.min_fico is not None and fico < rules.min_fico:
                return False
            if rules.max_fico is not None and fico > rules.max_fico:
                return False

        down = context.down_percent
        if rules.min_down_percent is not None and down < rules.min_down_percent:
            return False
        if rules.max_down_percent is not None and down > rules.max_down_percent:
            return False

        ltv = context.loan_to_value
        if ltv is not None:
            if rules.min_ltv is not None and ltv < rules.min_ltv:
                return False
            if rules.max_ltv is not None and ltv > rules.max_ltv:
                return False

        return True

    def select_strategy(self, context: DealContext) -> Tuple[str, float]:
        """
        Thompson-sample one admissible strategy.

        Returns:
            (strategy_key, confidence) where confidence is the winning
            posterior sample. Falls back to the whole catalogue when no
            strategy admits the context.
        """
        candidates = [s for s in self.strategies.values() if self.matches_context(s, context)]
        if not candidates:
            candidates = list(self.strategies.values())

        best_key = candidates[0].key
        best_sample = -1.0
        for s in candidates:
            sample = sample_beta(s.alpha, s.beta, self.rng)
            # Strict comparison keeps the first candidate on ties
            if sample > best_sample:
                best_sample = sample
                best_key = s.key

        return best_key, best_sample

    def get_recommendation(self, context: DealContext) -> StrategyRecommendation:
        key, confidence = self.select_strategy(context)
        strategy = self.strategies[key]

        return StrategyRecommendation(
            strategy=strategy.name,
            strategy_key=key,
            confidence=confidence,
            description=strategy.description,
            recommendations=self._actions_for(key, context),
            all_strategies={
                k: self._performance(s)
                for k, s in self.strategies.items()
            },
        )

    # ── Learning ─────────────────────────────────────────────────────────────

    def record_outcome(self, strategy_key: str, success: bool) -> None:
        """Count one trial (and one win on success). Unknown keys are ignored."""
        strategy = self.strategies.get(strategy_key)
        if strategy is None:
            logger.warning(f"[{self.label}] Unknown strategy: {strategy_key}")
            return

        strategy.trials += 1
        if success:
            strategy.wins += 1

        logger.debug(
            f"[{self.label}] Recorded {'success' if success else 'failure'} for "
            f"'{strategy.name}': {strategy.wins}/{strategy.trials} "
            f"({strategy.success_rate:.0%})"
        )

        if self.writer is not None:
            self.writer.mark_dirty()

    def reset_statistics(self) -> None:
        """Back to the Laplace starting point."""
        for s in self.strategies.values():
            s.wins = 1
            s.trials = 1
        if self.writer is not None:
            self.writer.mark_dirty()

    # ── Reporting ────────────────────────────────────────────────────────────

    def confidence_interval(self, strategy_key: str) -> Tuple[float, float]:
        s = self.strategies[strategy_key]
        return wilson_interval(s.wins, s.trials, self.config.z)

    def get_performance_report(self) -> PerformanceReport:
        """Per-strategy table plus catalogue totals. Confidence = 1 - interval width."""
        table = {k: self._performance(s) for k, s in self.strategies.items()}

        total_trials = sum(s.trials for s in self.strategies.values())
        total_wins = sum(s.wins for s in self.strategies.values())

        best_key: Optional[str] = None
        best_rate = 0.0
        for k, s in self.strategies.items():
            if s.success_rate > best_rate:
                best_rate = s.success_rate
                best_key = k

        return PerformanceReport(
            strategies=table,
            best_strategy=best_key,
            total_trials=total_trials,
            total_wins=total_wins,
            overall_success_rate=total_wins / total_trials if total_trials > 0 else 0.0,
            last_updated=datetime.now().isoformat(),
        )

    # ── Persistence ──────────────────────────────────────────────────────────

    def get_state(self) -> dict:
        return {
            "strategies": [
                {"key": s.key, "name": s.name, "wins": s.wins, "trials": s.trials}
                for s in self.strategies.values()
            ],
        }

    def restore_state(self, state: dict) -> None:
        """
        Apply saved counters to known strategies.

        Keys no longer in the catalogue are skipped; strategies missing from
        the blob keep their current counters.
        """
        updates: Dict[str, Tuple[int, int]] = {}
        for saved in state.get("strategies", []):
            key = saved.get("key")
            if key not in self.strategies:
                continue
            current = self.strategies[key]
            wins = int(saved.get("wins", current.wins))
            trials = int(saved.get("trials", current.trials))
            if wins < 0 or trials < wins:
                raise ValueError(f"Invalid counters for {key}: {wins}/{trials}")
            updates[key] = (wins, trials)

        for key, (wins, trials) in updates.items():
            self.strategies[key].wins = wins
            self.strategies[key].trials = trials

    def save_state(self, storage: StoragePort, key: Optional[str] = None) -> None:
        key = key or self.config.state_key
        save_state(storage, key, STATE_KIND, self.get_state())
        logger.debug(f"[{self.label}] Saved state to '{key}'")

    def load_state(self, storage: StoragePort, key: Optional[str] = None) -> bool:
        return restore_from_storage(self, storage, key or self.config.state_key, STATE_KIND, self.label)

    def flush(self) -> bool:
        """Write any pending outcomes now (shutdown path)."""
        if self.writer is None:
            return False
        return self.writer.flush()

    # ── Internal ─────────────────────────────────────────────────────────────

    def _performance(self, s: Strategy) -> StrategyPerformance:
        lower, upper = wilson_interval(s.wins, s.trials, self.config.z)
        return StrategyPerformance(
            name=s.name,
            success_rate=s.success_rate,
            wins=s.wins,
            trials=s.trials,
            confidence=1.0 - (upper - lower),
            confidence_interval=(lower, upper),
        )

    def _actions_for(self, key: str, context: DealContext) -> List[StrategyAction]:
        """Concrete, templated steps for a chosen strategy."""
        actions: List[StrategyAction] = []
        price = context.vehicle_price
        down_percent = context.down_percent

        if key == "high_down_payment":
            if down_percent < 20:
                actions.append(
                    StrategyAction(
                        action="increase_down",
                        from_value=context.down_payment,
                        to_value=round(price * 0.20),
                        reason="Maximizing down payment works well for this profile",
                        expected_impact="Improves approval odds by 25-30%, qualifies for better rates",
                    )
                )

        elif key == "extend_term":
            if context.term_months < 72:
                actions.append(
                    StrategyAction(
                        action="extend_term",
                        from_value=context.term_months,
                        to_value=72,
                        reason="A longer term suits this customer profile",
                        expected_impact="Lowers monthly payment significantly, easier approval",
                    )
                )

        elif key == "optimize_rate":
            actions.append(
                StrategyAction(
                    action="optimize_rate",
                    reason="Focus on rate shopping for this prime customer",
                    expected_impact="Even 0.5% rate reduction saves thousands over loan term",
                )
            )
            if context.customer_fico is not None and context.customer_fico >= 720:
                actions.append(
                    StrategyAction(
                        action="shop_multiple_lenders",
                        reason="Excellent credit qualifies for competitive rate shopping",
                        expected_impact="Can secure rates 1-2% lower than average",
                    )
                )

        elif key == "maximize_trade":
            if context.trade_value is not None and context.trade_value > 0:
                actions.append(
                    StrategyAction(
                        action="maximize_trade",
                        reason="Push the trade value higher",
                        expected_impact="Every $1K increase in trade reduces amount financed and improves LTV",
                    )
                )
                actions.append(
                    StrategyAction(
                        action="get_multiple_appraisals",
                        reason="Get 2-3 trade valuations to maximize value",
                        expected_impact="Can increase trade value by $500-$2000",
                    )
                )

        elif key == "reduce_vehicle_price":
            actions.append(
                StrategyAction(
                    action="guide_to_lower_price",
                    reason="Customer needs a lower price point for successful financing",
                    expected_impact="Improves payment-to-income ratio, increases approval odds",
                )
            )
            if price > 35_000:
                actions.append(
                    StrategyAction(
                        action="target_price_range",
                        to_value="$25,000-$30,000",
                        reason="Target mid-range vehicles for better financing options",
                        expected_impact="Significantly better approval rates in this price range",
                    )
                )

        elif key == "add_cosigner":
            actions.append(
                StrategyAction(
                    action="recommend_cosigner",
                    reason="A co-signer fits this credit profile",
                    expected_impact="Dramatically improves approval odds (50% -> 85%)",
                )
            )
            actions.append(
                StrategyAction(
                    action="explain_cosigner_benefits",
                    reason="Co-signer can help secure better rates and terms",
                    expected_impact="May qualify for rates 2-4% lower",
                )
            )

        elif key == "balanced_structure":
            actions.append(
                StrategyAction(
                    action="balanced_approach",
                    reason="Balanced structure: 15% down, 60-month term",
                    expected_impact="Best balance of approval odds, payment, and total cost",
                )
            )
            if down_percent < 15:
                actions.append(
                    StrategyAction(
                        action="target_15_percent_down",
                        to_value=round(price * 0.15),
                        reason="15% down payment is sweet spot for this profile",
                        expected_impact="Good approval odds without excessive cash requirement",
                    )
                )

        return actions
