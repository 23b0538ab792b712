# ═══════════════════════════════════════════════════════════════════════════════
# ADAPTIVE CLUSTER ENGINE
# Online customer segmentation with drifting centroids and outlier rejection
# ═══════════════════════════════════════════════════════════════════════════════


"""
Customers are points in a fixed 10-dimensional space, each feature scaled
into [0, 1] by a fixed range. A global feature-weight vector (sums to 1)
rescales every point before it is compared with the centroids, so centroids
and variances live in the weighted space.

For every customer:

    normalize -> weight -> nearest centroid -> outlier test -> update

Outliers (variance-scaled distance above the threshold) are recorded but
never learned from. Everything else pulls its centroid toward it with an
EMA, refreshes that centroid's per-dimension variance, and nudges the
feature weights toward dimensions that still differ from the centroid.

The first K distinct customers seed the K centroids directly; until then
only the seeded centroids compete for assignment.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Union

import numpy as np
from loguru import logger

from adaptive_core.core.persistence import restore_from_storage, save_state
from adaptive_core.core.storage import StoragePort


STATE_KIND = "cluster_engine"

MAX_FEATURE_DIM = 10

FEATURE_NAMES = [
    "FICO",
    "Income",
    "Down%",
    "Visits",
    "TimeOnLot",
    "Engagement",
    "Complexity",
    "TradeValue",
    "Term",
    "PaymentSens",
]

# Centroid dimensions used by segment profiling
FICO_DIM = 0
INCOME_DIM = 1
DOWN_DIM = 2
ENGAGEMENT_DIM = 5


@dataclass
class ClusterEngineConfig:
    n_clusters: int = 5
    feature_dim: int = 10
    learning_rate: float = 0.05        # Centroid EMA rate
    variance_rate: float = 0.1         # Variance EMA rate
    weight_rate: float = 0.001         # Feature weight nudge
    outlier_threshold: float = 3.5
    window_size: int = 500             # Recent points kept for size estimates
    max_outliers: int = 1000
    saved_outliers: int = 100
    initial_variance: float = 0.1
    variance_floor: float = 1e-6
    seed_from_data: bool = True
    state_key: str = "cluster_engine"
    seed: Optional[int] = None


# ── Customer Features ────────────────────────────────────────────────────────


@dataclass
class CustomerFeatures:
    """Raw customer signals with every field defaulted."""
    fico_score: float = 650
    income: float = 50_000
    down_payment_percent: float = 0.1     # Fraction of price, 0-1
    previous_visits: float = 0
    time_on_lot_minutes: float = 30
    engagement_score: float = 0.5         # 0-1
    deal_complexity: float = 0.5          # 0-1
    trade_in_value: float = 0
    desired_term: float = 60              # Months
    monthly_payment_sensitivity: float = 0.5

    def to_vector(self) -> np.ndarray:
        """Scale each feature into [0, 1] by its fixed range."""
        raw = np.array(
            [
                (self.fico_score - 300) / (850 - 300),
                self.income / 200_000,
                self.down_payment_percent,
                self.previous_visits / 10,
                self.time_on_lot_minutes / 180,
                self.engagement_score,
                self.deal_complexity,
                self.trade_in_value / 30_000,
                self.desired_term / 84,
                self.monthly_payment_sensitivity,
            ],
            dtype=float,
        )
        return np.clip(raw, 0.0, 1.0)


_FEATURE_ALIASES = {
    "ficoScore": "fico_score",
    "downPaymentPercent": "down_payment_percent",
    "previousVisits": "previous_visits",
    "timeOnLotMinutes": "time_on_lot_minutes",
    "engagementScore": "engagement_score",
    "dealComplexity": "deal_complexity",
    "tradeInValue": "trade_in_value",
    "desiredTerm": "desired_term",
    "monthlyPaymentSensitivity": "monthly_payment_sensitivity",
}


def normalize_features(raw: Union[CustomerFeatures, Mapping[str, Any], None]) -> CustomerFeatures:
    """
    Build a fully-defaulted CustomerFeatures from whatever the caller has.

    Accepts snake_case or camelCase keys. Missing or None values take the
    field default; unknown keys are ignored.
    """
    if isinstance(raw, CustomerFeatures):
        return raw

    known = {f.name for f in fields(CustomerFeatures)}
    values: Dict[str, float] = {}
    for key, value in (raw or {}).items():
        name = _FEATURE_ALIASES.get(key, key)
        if name in known and value is not None:
            values[name] = float(value)
    return CustomerFeatures(**values)


# ── Results ──────────────────────────────────────────────────────────────────


@dataclass
class ClusterProfile:
    name: str
    description: str
    approach: str
    priority: float


@dataclass
class ClusterResult:
    cluster_id: int
    cluster_name: str
    cluster_description: str
    is_outlier: bool
    outlier_reason: Optional[str]
    confidence: float
    recommended_approach: str
    priority_score: float
    distance: float      # Weighted-space distance to the centroid before any update


@dataclass
class OutlierRecord:
    timestamp: str
    features: Dict[str, float]
    cluster_id: int
    reason: str


@dataclass
class ClusterInfo:
    id: int
    profile: ClusterProfile
    centroid: List[float]      # De-weighted, in [0, 1]
    size_estimate: int


@dataclass
class ClusterSummary:
    total_customers_processed: int
    outliers_detected: int
    feature_weights: List[float]
    clusters: List[ClusterInfo] = field(default_factory=list)


def profile_centroid(values: np.ndarray) -> ClusterProfile:
    """First-match segment rules over de-weighted centroid values."""
    fico = values[FICO_DIM]
    income = values[INCOME_DIM] if len(values) > INCOME_DIM else 0.0
    down = values[DOWN_DIM] if len(values) > DOWN_DIM else 0.0
    engagement = values[ENGAGEMENT_DIM] if len(values) > ENGAGEMENT_DIM else 0.5

    if fico > 0.7 and income > 0.6:
        return ClusterProfile(
            name="Prime Buyers",
            description="High credit, strong income, serious buyers",
            approach="Premium vehicles, competitive rates, quick close",
            priority=0.95,
        )
    if fico > 0.5 and engagement > 0.6:
        return ClusterProfile(
            name="Motivated Shoppers",
            description="Decent credit, actively engaged, ready to buy",
            approach="Focus on value, flexible terms, build rapport",
            priority=0.85,
        )
    if engagement < 0.3:
        return ClusterProfile(
            name="Tire Kickers",
            description="Low engagement, browsing, not serious",
            approach="Minimal time investment, capture info for follow-up",
            priority=0.3,
        )
    if fico < 0.4:
        return ClusterProfile(
            name="Credit Challenged",
            description="Subprime credit, needs special financing",
            approach="Larger down payment, subprime lenders, realistic expectations",
            priority=0.6,
        )
    if down > 0.3 and fico > 0.45:
        return ClusterProfile(
            name="Cash Strong Buyers",
            description="High down payment, moderate credit",
            approach="Leverage cash position, focus on deal structure",
            priority=0.8,
        )
    return ClusterProfile(
        name="Average Shoppers",
        description="Middle-of-road credit and income",
        approach="Standard process, competitive financing",
        priority=0.7,
    )


class ClusterEngine:
    """
    Incremental weighted clustering with outlier rejection.

    Clusters are identified by their index 0..K-1 and never created or
    destroyed after construction, only re-centred.
    """

    label = "ClusterEngine"

    def __init__(
        self,
        config: Optional[ClusterEngineConfig] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        self.config = config or ClusterEngineConfig()
        cfg = self.config
        if not 1 <= cfg.feature_dim <= MAX_FEATURE_DIM:
            raise ValueError(f"feature_dim must be in [1, {MAX_FEATURE_DIM}], got {cfg.feature_dim}")
        if cfg.n_clusters < 1:
            raise ValueError(f"n_clusters must be positive, got {cfg.n_clusters}")

        self.rng = rng if rng is not None else np.random.default_rng(cfg.seed)
        self.reset()

    @property
    def n_clusters(self) -> int:
        return self.config.n_clusters

    @property
    def feature_dim(self) -> int:
        return self.config.feature_dim

    def reset(self) -> None:
        """Fresh random centroids, uniform weights, no history."""
        k, d = self.n_clusters, self.feature_dim
        # Random centroids at the scale of weighted points
        self.centroids = self.rng.random((k, d)) / d
        self.variances = np.full((k, d), self.config.initial_variance)
        self.feature_weights = np.full(d, 1.0 / d)

        self.window: List[np.ndarray] = []
        self.total_points: int = 0
        self.outliers: List[OutlierRecord] = []
        self.seeded: int = 0 if self.config.seed_from_data else k

    # ── Processing ───────────────────────────────────────────────────────────

    def vectorize(self, features: Union[CustomerFeatures, Mapping[str, Any], None]) -> np.ndarray:
        """Normalized (unweighted) feature vector of length feature_dim."""
        return normalize_features(features).to_vector()[: self.feature_dim]

    def process_customer(
        self, features: Union[CustomerFeatures, Mapping[str, Any], None]
    ) -> ClusterResult:
        """Assign a customer to a segment, flag it if anomalous, and learn from it."""
        customer = normalize_features(features)
        point = customer.to_vector()[: self.feature_dim] * self.feature_weights

        cluster_id = self._seed_centroid(point)
        if cluster_id is not None:
            distance = 0.0
            is_outlier = False
        else:
            cluster_id = self._nearest(point)
            distance = float(np.linalg.norm(point - self.centroids[cluster_id]))
            is_outlier = self._outlier_distance(point, cluster_id) > self.config.outlier_threshold
            if not is_outlier:
                self._learn(cluster_id, point)

        self.window.append(point)
        if len(self.window) > self.config.window_size:
            self.window = self.window[-self.config.window_size:]
        self.total_points += 1

        profile = self.get_cluster_profile(cluster_id)
        reason = self._explain_outlier(point, cluster_id) if is_outlier else None

        if is_outlier:
            self.outliers.append(
                OutlierRecord(
                    timestamp=datetime.now().isoformat(),
                    features=asdict(customer),
                    cluster_id=cluster_id,
                    reason=reason,
                )
            )
            if len(self.outliers) > self.config.max_outliers:
                self.outliers = self.outliers[-self.config.max_outliers:]
            logger.debug(f"[{self.label}] Outlier near cluster {cluster_id}: {reason}")

        return ClusterResult(
            cluster_id=cluster_id,
            cluster_name=profile.name,
            cluster_description=profile.description,
            is_outlier=is_outlier,
            outlier_reason=reason,
            confidence=self._confidence(point, cluster_id),
            recommended_approach=profile.approach,
            priority_score=profile.priority,
            distance=distance,
        )

    # ── Reporting ────────────────────────────────────────────────────────────

    def deweighted_centroid(self, cluster_id: int) -> np.ndarray:
        """Centroid mapped back to the [0, 1] feature scale."""
        weights = np.maximum(self.feature_weights, self.config.variance_floor)
        return np.clip(self.centroids[cluster_id] / weights, 0.0, 1.0)

    def get_cluster_profile(self, cluster_id: int) -> ClusterProfile:
        return profile_centroid(self.deweighted_centroid(cluster_id))

    def get_cluster_summary(self) -> ClusterSummary:
        """Read-only snapshot. Sizes come from re-assigning the recent window."""
        sizes = np.zeros(self.n_clusters, dtype=int)
        for point in self.window:
            sizes[self._nearest(point)] += 1

        return ClusterSummary(
            total_customers_processed=self.total_points,
            outliers_detected=len(self.outliers),
            feature_weights=self.feature_weights.tolist(),
            clusters=[
                ClusterInfo(
                    id=i,
                    profile=self.get_cluster_profile(i),
                    centroid=self.deweighted_centroid(i).tolist(),
                    size_estimate=int(sizes[i]),
                )
                for i in range(self.n_clusters)
            ],
        )

    def get_recent_outliers(self, limit: int = 10) -> List[OutlierRecord]:
        if limit <= 0:
            return []
        return self.outliers[-limit:]

    # ── Persistence ──────────────────────────────────────────────────────────

    def get_state(self) -> dict:
        return {
            "centroids": self.centroids.tolist(),
            "variances": self.variances.tolist(),
            "feature_weights": self.feature_weights.tolist(),
            "total_points": self.total_points,
            "seeded": self.seeded,
            "outliers": [asdict(o) for o in self.outliers[-self.config.saved_outliers:]],
        }

    def restore_state(self, state: dict) -> None:
        """
        Load saved centroids, variances and weights.

        Arrays must match the configured shape. Fields a 1.0 blob did not
        write (seeded) fall back to treating every centroid as seeded.
        """
        shape = (self.n_clusters, self.feature_dim)
        centroids = np.asarray(state["centroids"], dtype=float)
        if centroids.shape != shape:
            raise ValueError(f"Centroid shape {centroids.shape} does not match {shape}")

        variances = np.asarray(
            state.get("variances", np.full(shape, self.config.initial_variance)), dtype=float
        )
        if variances.shape != shape:
            raise ValueError(f"Variance shape {variances.shape} does not match {shape}")

        weights = np.asarray(
            state.get("feature_weights", np.full(self.feature_dim, 1.0 / self.feature_dim)),
            dtype=float,
        )
        if weights.shape != (self.feature_dim,) or weights.sum() <= 0:
            raise ValueError("Invalid feature weights")

        outliers = [OutlierRecord(**_known_fields(o)) for o in state.get("outliers", [])]

        self.centroids = centroids
        self.variances = np.maximum(variances, self.config.variance_floor)
        self.feature_weights = weights / weights.sum()
        self.total_points = int(state.get("total_points", 0))
        self.seeded = int(state.get("seeded", self.n_clusters))
        self.outliers = outliers
        self.window = []

    def save_state(self, storage: StoragePort, key: Optional[str] = None) -> None:
        key = key or self.config.state_key
        save_state(storage, key, STATE_KIND, self.get_state())
        logger.debug(f"[{self.label}] Saved state to '{key}'")

    def load_state(self, storage: StoragePort, key: Optional[str] = None) -> bool:
        return restore_from_storage(self, storage, key or self.config.state_key, STATE_KIND, self.label)

    # ── Internal ─────────────────────────────────────────────────────────────

    def _seed_centroid(self, point: np.ndarray) -> Optional[int]:
        """Adopt point as the next centroid while seeding. Returns its id, or None."""
        if self.seeded >= self.n_clusters:
            return None
        existing = self.centroids[: self.seeded]
        if self.seeded > 0 and np.min(np.linalg.norm(existing - point, axis=1)) <= 1e-12:
            return None
        cluster_id = self.seeded
        self.centroids[cluster_id] = point
        self.seeded += 1
        return cluster_id

    def _nearest(self, point: np.ndarray) -> int:
        """Nearest active centroid; ties go to the lowest id."""
        active = self.centroids[: max(self.seeded, 1)] if self.seeded < self.n_clusters else self.centroids
        distances = np.linalg.norm(active - point, axis=1)
        return int(np.argmin(distances))

    def _outlier_distance(self, point: np.ndarray, cluster_id: int) -> float:
        diff = point - self.centroids[cluster_id]
        safe_variance = np.maximum(self.variances[cluster_id], self.config.variance_floor)
        return float(np.sqrt(np.sum(diff * diff / safe_variance)))

    def _learn(self, cluster_id: int, point: np.ndarray) -> None:
        cfg = self.config

        # Centroid EMA
        self.centroids[cluster_id] += cfg.learning_rate * (point - self.centroids[cluster_id])

        diff = point - self.centroids[cluster_id]

        # Discriminative features gain weight
        weights = self.feature_weights + cfg.weight_rate * np.abs(diff)
        self.feature_weights = weights / weights.sum()

        # Variance EMA
        variance = self.variances[cluster_id]
        variance += cfg.variance_rate * (diff * diff - variance)
        self.variances[cluster_id] = np.maximum(variance, cfg.variance_floor)

    def _confidence(self, point: np.ndarray, cluster_id: int) -> float:
        distance = float(np.linalg.norm(point - self.centroids[cluster_id]))
        mean_variance = float(np.mean(self.variances[cluster_id]))
        return min(float(np.exp(-distance / (mean_variance + self.config.variance_floor))), 1.0)

    def _explain_outlier(self, point: np.ndarray, cluster_id: int) -> str:
        diff = np.abs(point - self.centroids[cluster_id])
        top = np.argsort(-diff, kind="stable")[:3]
        reasons = [
            f"{FEATURE_NAMES[i]} significantly different from cluster pattern"
            for i in top
            if i < len(FEATURE_NAMES)
        ]
        return " | ".join(reasons) or "Unusual pattern detected"


def _known_fields(d: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(OutlierRecord)}
    return {k: v for k, v in d.items() if k in names}
