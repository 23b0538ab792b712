#!/usr/bin/env python3
"""
Simulate a dealership day against the decision core.

Usage:
    # In-memory run with defaults:
    python simulate.py

    # Persist engine state between runs:
    python simulate.py --storage-dir ./state

    # Longer, reproducible day with more traffic:
    python simulate.py --ticks 500 --customers 400 --deals 150 --seed 7

    # See every outcome and outlier:
    python simulate.py --log-level DEBUG
"""

import argparse
import sys

import numpy as np
from loguru import logger

from adaptive_core.core.decision_core import CoreConfig, DecisionCore
from adaptive_core.core.role_hierarchy import UserRole
from adaptive_core.core.storage import PersistenceConfig
from adaptive_core.core.strategy_engine import DealContext


# (id, name, role, manager)
STAFF = [
    ("gm", "Grace", UserRole.GENERAL_MANAGER, None),
    ("sm", "Sam", UserRole.SALES_MANAGER, "gm"),
    ("bm", "Bea", UserRole.BDC_MANAGER, "gm"),
    ("s1", "Alice", UserRole.SENIOR_SALES, "sm"),
    ("s2", "Bob", UserRole.SALES, "sm"),
    ("s3", "Carol", UserRole.SALES, "sm"),
    ("s4", "Dan", UserRole.SALES_TRAINEE, "sm"),
    ("b1", "Eve", UserRole.BDC, "bm"),
    ("b2", "Finn", UserRole.BDC, "bm"),
]

# Hidden per-strategy close rates the bandit has to discover
TRUE_CLOSE_RATES = {
    "high_down_payment": 0.45,
    "extend_term": 0.35,
    "optimize_rate": 0.65,
    "maximize_trade": 0.30,
    "reduce_vehicle_price": 0.25,
    "add_cosigner": 0.40,
    "balanced_structure": 0.55,
}


def build_team(core):
    for id, name, role, manager in STAFF:
        if core.network.get_hierarchical_oscillator(id) is None:
            core.add_user(id, name, role, manager_id=manager)


def random_customer(rng):
    """Draw a prime or subprime shopper."""
    if rng.random() < 0.5:
        return {
            "fico_score": rng.normal(770, 25),
            "income": rng.normal(140_000, 15_000),
            "down_payment_percent": rng.uniform(0.15, 0.35),
            "engagement_score": rng.uniform(0.6, 0.9),
            "previous_visits": rng.integers(1, 4),
        }
    return {
        "ficoScore": rng.normal(560, 30),
        "income": rng.normal(40_000, 8_000),
        "downPaymentPercent": rng.uniform(0.0, 0.08),
        "engagementScore": rng.uniform(0.3, 0.6),
        "timeOnLotMinutes": rng.uniform(60, 150),
    }


def random_deal(rng):
    price = float(rng.uniform(18_000, 55_000))
    return DealContext(
        vehicle_price=price,
        down_payment=float(price * rng.uniform(0.0, 0.3)),
        term_months=int(rng.choice([48, 60, 72])),
        trade_value=float(rng.uniform(0, 15_000)) if rng.random() < 0.4 else None,
        customer_fico=float(rng.normal(680, 70)),
        loan_to_value=float(rng.uniform(70, 130)),
    )


def format_team(core):
    status = core.network.get_team_status()
    lines = [
        f"  Coherence: {status.coherence:.3f} ({status.status})",
        f"  Staff: {status.total_salespeople}",
    ]
    for m in status.team_members:
        lines.append(
            f"    {m.name:<6} phase={m.phase:5.2f} active={m.active_deals} "
            f"closed={m.deals_today} [{m.status}]"
        )
    for b in status.bottlenecks:
        lines.append(f"  Bottleneck: {b.name} - {b.issue}")
    for r in status.mentoring_opportunities:
        lines.append(f"  Mentoring: {r.recommendation}")

    team = core.network.get_team_performance("sm")
    if team is not None:
        lines.append(f"  Sales team avg score: {team.avg_performance_score:.1f}")
        for rec in team.recommendations:
            lines.append(f"    - {rec}")
    return "\n".join(lines)


def format_strategies(core):
    report = core.strategies.get_performance_report()
    lines = []
    for key, perf in report.strategies.items():
        lo, hi = perf.confidence_interval
        lines.append(
            f"  {perf.name:<24} {perf.wins:>4}/{perf.trials:<4} "
            f"rate={perf.success_rate:6.1%}  CI=[{lo:.2f}, {hi:.2f}]"
        )
    lines.append(f"  Best: {report.best_strategy}  Overall: {report.overall_success_rate:.1%}")
    return "\n".join(lines)


def format_clusters(core):
    summary = core.clusters.get_cluster_summary()
    lines = [
        f"  Customers: {summary.total_customers_processed}  Outliers: {summary.outliers_detected}"
    ]
    for c in summary.clusters:
        lines.append(
            f"    #{c.id} {c.profile.name:<20} size~{c.size_estimate:<4} "
            f"fico={c.centroid[0]:.2f} income={c.centroid[1]:.2f}"
        )
    for o in core.clusters.get_recent_outliers(3):
        lines.append(f"  Outlier: {o.reason}")
    return "\n".join(lines)


def main():
    parser = argparse.ArgumentParser(description="Simulate a dealership day")
    parser.add_argument("--storage-dir", default=None, help="Directory for engine state (default: in-memory)")
    parser.add_argument("--ticks", type=int, default=200, help="Network ticks to run (default: 200)")
    parser.add_argument("--customers", type=int, default=200, help="Customers to segment (default: 200)")
    parser.add_argument("--deals", type=int, default=100, help="Deals to structure (default: 100)")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--log-level", default="INFO", help="Log level (default: INFO)")
    args = parser.parse_args()

    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
        level=args.log_level.upper(),
    )

    config = CoreConfig(
        name="dealership",
        seed=args.seed,
        persistence=PersistenceConfig(storage_dir=args.storage_dir),
    )
    core = DecisionCore(config)
    core.start()
    build_team(core)

    rng = np.random.default_rng(args.seed)
    salespeople = [id for id, _, role, _ in STAFF if role in (UserRole.SALES, UserRole.SENIOR_SALES, UserRole.SALES_TRAINEE)]

    print(f"\n{'=' * 60}")
    print(f"  {core.name}: {core.network.n} staff online")
    print(f"{'=' * 60}\n")

    customers_per_tick = args.customers / max(args.ticks, 1)
    deals_per_tick = args.deals / max(args.ticks, 1)
    customer_carry = 0.0
    deal_carry = 0.0

    for _ in range(args.ticks):
        core.tick()

        customer_carry += customers_per_tick
        while customer_carry >= 1.0:
            customer_carry -= 1.0
            core.process_customer(random_customer(rng))

            lead_owner = core.assign_new_lead(float(rng.random()))
            if lead_owner is not None and lead_owner in salespeople:
                osc = core.network.get_oscillator(lead_owner)
                core.update_workload(lead_owner, osc.active_deals + 1)

        deal_carry += deals_per_tick
        while deal_carry >= 1.0:
            deal_carry -= 1.0
            rec = core.recommend(random_deal(rng))
            won = bool(rng.random() < TRUE_CLOSE_RATES.get(rec.strategy_key, 0.3))
            core.record_outcome(rec.strategy_key, won)
            if won:
                closer = str(rng.choice(salespeople))
                core.record_deal_closed(closer)
                node = core.network.get_hierarchical_oscillator(closer)
                core.update_performance_metrics(
                    closer,
                    deals_this_month=node.metrics.deals_this_month + 1,
                    revenue_this_month=node.metrics.revenue_this_month + 30_000,
                )

    print(f"[Team]\n{format_team(core)}\n")
    print(f"[Strategies]\n{format_strategies(core)}\n")
    print(f"[Segments]\n{format_clusters(core)}\n")

    core.shutdown()


if __name__ == "__main__":
    main()
