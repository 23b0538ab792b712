# ═══════════════════════════════════════════════════════════════════════════════
# ROLE HIERARCHY
# Dealership roles, levels, metadata and per-role defaults
# ═══════════════════════════════════════════════════════════════════════════════


"""
Roles decide three things for the coordination network: where a person sits
in the reporting graph, which performance targets their score is measured
against, and what skill level / natural frequency their oscillator starts
with.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class UserRole(Enum):
    """Dealership roles."""
    # Sales floor
    SALES = "sales"
    SALES_TRAINEE = "sales_trainee"
    SENIOR_SALES = "senior_sales"

    # Business development center
    BDC = "bdc"
    BDC_MANAGER = "bdc_manager"

    # Management
    SALES_MANAGER = "sales_manager"
    GENERAL_MANAGER = "general_manager"

    # Finance & insurance
    FI_MANAGER = "fi_manager"

    # Service
    SERVICE_ADVISOR = "service_advisor"
    SERVICE_MANAGER = "service_manager"

    ADMIN = "admin"


class RoleLevel(Enum):
    ENTRY = 1
    ASSOCIATE = 2
    SENIOR = 3
    LEAD = 4
    MANAGER = 5
    DIRECTOR = 6
    EXECUTIVE = 7


@dataclass(frozen=True)
class RoleMetadata:
    role: UserRole
    level: RoleLevel
    title: str
    description: str
    can_manage_roles: tuple = ()
    reports_to: Optional[UserRole] = None
    max_subordinates: int = 0
    is_management: bool = False


ROLE_METADATA: Dict[UserRole, RoleMetadata] = {
    UserRole.SALES_TRAINEE: RoleMetadata(
        role=UserRole.SALES_TRAINEE,
        level=RoleLevel.ENTRY,
        title="Sales Trainee",
        description="Entry-level sales position",
        reports_to=UserRole.SALES_MANAGER,
    ),
    UserRole.SALES: RoleMetadata(
        role=UserRole.SALES,
        level=RoleLevel.ASSOCIATE,
        title="Sales Consultant",
        description="Sells vehicles on the floor",
        reports_to=UserRole.SALES_MANAGER,
    ),
    UserRole.SENIOR_SALES: RoleMetadata(
        role=UserRole.SENIOR_SALES,
        level=RoleLevel.SENIOR,
        title="Senior Sales Consultant",
        description="Experienced salesperson who mentors trainees",
        can_manage_roles=(UserRole.SALES_TRAINEE,),
        reports_to=UserRole.SALES_MANAGER,
        max_subordinates=3,
    ),
    UserRole.BDC: RoleMetadata(
        role=UserRole.BDC,
        level=RoleLevel.ASSOCIATE,
        title="BDC Representative",
        description="Works inbound leads and sets appointments",
        reports_to=UserRole.BDC_MANAGER,
    ),
    UserRole.BDC_MANAGER: RoleMetadata(
        role=UserRole.BDC_MANAGER,
        level=RoleLevel.LEAD,
        title="BDC Manager",
        description="Runs the BDC team and lead generation",
        can_manage_roles=(UserRole.BDC,),
        reports_to=UserRole.GENERAL_MANAGER,
        max_subordinates=10,
        is_management=True,
    ),
    UserRole.SALES_MANAGER: RoleMetadata(
        role=UserRole.SALES_MANAGER,
        level=RoleLevel.MANAGER,
        title="Sales Manager",
        description="Runs the sales floor and approves deals",
        can_manage_roles=(UserRole.SALES, UserRole.SALES_TRAINEE, UserRole.SENIOR_SALES),
        reports_to=UserRole.GENERAL_MANAGER,
        max_subordinates=15,
        is_management=True,
    ),
    UserRole.FI_MANAGER: RoleMetadata(
        role=UserRole.FI_MANAGER,
        level=RoleLevel.MANAGER,
        title="F&I Manager",
        description="Financing and aftermarket products",
        reports_to=UserRole.GENERAL_MANAGER,
        is_management=True,
    ),
    UserRole.SERVICE_ADVISOR: RoleMetadata(
        role=UserRole.SERVICE_ADVISOR,
        level=RoleLevel.ASSOCIATE,
        title="Service Advisor",
        description="Handles service appointments",
        reports_to=UserRole.SERVICE_MANAGER,
    ),
    UserRole.SERVICE_MANAGER: RoleMetadata(
        role=UserRole.SERVICE_MANAGER,
        level=RoleLevel.MANAGER,
        title="Service Manager",
        description="Runs the service department",
        can_manage_roles=(UserRole.SERVICE_ADVISOR,),
        reports_to=UserRole.GENERAL_MANAGER,
        max_subordinates=10,
        is_management=True,
    ),
    UserRole.GENERAL_MANAGER: RoleMetadata(
        role=UserRole.GENERAL_MANAGER,
        level=RoleLevel.DIRECTOR,
        title="General Manager",
        description="Oversees the whole dealership",
        can_manage_roles=(
            UserRole.SALES_MANAGER,
            UserRole.BDC_MANAGER,
            UserRole.FI_MANAGER,
            UserRole.SERVICE_MANAGER,
        ),
        max_subordinates=20,
        is_management=True,
    ),
    UserRole.ADMIN: RoleMetadata(
        role=UserRole.ADMIN,
        level=RoleLevel.EXECUTIVE,
        title="Administrator",
        description="System administrator",
        can_manage_roles=tuple(UserRole),
        max_subordinates=999,
        is_management=True,
    ),
}


def is_management(role: UserRole) -> bool:
    return ROLE_METADATA[role].is_management


# ── Settings ─────────────────────────────────────────────────────────────────


@dataclass
class PerformanceTargets:
    """Per-role targets. None means the target does not apply to the role."""
    monthly_deals_target: Optional[float] = None
    monthly_revenue_target: Optional[float] = None
    monthly_gross_profit_target: Optional[float] = None

    # Conversion targets (%)
    lead_to_appointment_rate: Optional[float] = None
    appointment_to_show_rate: Optional[float] = None
    show_to_sold_rate: Optional[float] = None

    # Quality
    customer_satisfaction_target: Optional[float] = None   # 1-5

    # Activity
    daily_calls_target: Optional[float] = None
    daily_emails_target: Optional[float] = None
    daily_test_drives_target: Optional[float] = None

    # Time (minutes)
    avg_deal_time_target: Optional[float] = None
    avg_response_time_target: Optional[float] = None


@dataclass
class IntelligenceSettings:
    skill_level: float = 0.7
    natural_frequency: float = 1.0
    enable_performance_optimization: bool = True


@dataclass
class RoleSettings:
    performance_targets: PerformanceTargets = field(default_factory=PerformanceTargets)
    intelligence: IntelligenceSettings = field(default_factory=IntelligenceSettings)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> "RoleSettings":
        d = d or {}
        targets = d.get("performance_targets", {}) or {}
        intelligence = d.get("intelligence", {}) or {}
        return cls(
            performance_targets=PerformanceTargets(**_known(PerformanceTargets, targets)),
            intelligence=IntelligenceSettings(**_known(IntelligenceSettings, intelligence)),
        )


def _known(cls: type, d: Dict[str, Any]) -> Dict[str, Any]:
    """Drop keys the dataclass does not declare (newer or foreign state)."""
    names = set(cls.__dataclass_fields__)
    return {k: v for k, v in d.items() if k in names}


def default_performance_targets(role: UserRole) -> PerformanceTargets:
    if role in (UserRole.SALES, UserRole.SENIOR_SALES):
        return PerformanceTargets(
            monthly_deals_target=10,
            monthly_revenue_target=250_000,
            monthly_gross_profit_target=25_000,
            show_to_sold_rate=20,
            customer_satisfaction_target=4.5,
            daily_calls_target=20,
            daily_test_drives_target=3,
            avg_deal_time_target=180,
        )
    if role == UserRole.BDC:
        return PerformanceTargets(
            lead_to_appointment_rate=30,
            appointment_to_show_rate=70,
            daily_calls_target=50,
            daily_emails_target=30,
            avg_response_time_target=15,
        )
    if role == UserRole.SALES_MANAGER:
        # Team-level targets
        return PerformanceTargets(
            monthly_deals_target=80,
            monthly_gross_profit_target=200_000,
            customer_satisfaction_target=4.7,
            show_to_sold_rate=25,
        )
    return PerformanceTargets()


def default_intelligence(role: UserRole) -> IntelligenceSettings:
    level = ROLE_METADATA[role].level.value
    return IntelligenceSettings(
        skill_level=min(0.5 + level * 0.1, 1.0),
        natural_frequency=1.0,
    )


def get_default_role_settings(role: UserRole) -> RoleSettings:
    return RoleSettings(
        performance_targets=default_performance_targets(role),
        intelligence=default_intelligence(role),
    )
