"""
Configuration flags and tunable policy for the decision engine.

Provides centralized configuration for:
- Pricing policy (discount tiers, proximity threshold)
- Allocation weights (candidate scoring points and distance bands)
- Qualification rules (service name -> qualification keyword table)
- Feature flags (enable/disable features)
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from fieldops.lib.logging import get_logger


logger = get_logger(__name__)


class PricingPolicy(BaseModel):
    """
    Discount tiers applied by the pricing engine.

    Tiers are evaluated most generous first, so the percentages must be
    non-increasing: same site >= same area/proximity >= adjacent day.
    """

    same_site_discount_percent: float = Field(
        default=50.0,
        ge=0,
        le=100,
        description="Another active booking at the same site on the same day"
    )
    same_area_discount_percent: float = Field(
        default=25.0,
        ge=0,
        le=100,
        description="Another active booking in the same postcode area or within drive time, same day"
    )
    adjacent_day_discount_percent: float = Field(
        default=10.0,
        ge=0,
        le=100,
        description="Nearby active booking on the day before or after"
    )
    max_drive_minutes: int = Field(
        default=20,
        ge=1,
        le=240,
        description="Drive time under which another site counts as nearby"
    )
    km_per_minute: float = Field(
        default=0.5,
        gt=0,
        le=5,
        description="Urban driving speed used to turn drive time into distance"
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "same_site_discount_percent": 50,
                "same_area_discount_percent": 25,
                "adjacent_day_discount_percent": 10,
                "max_drive_minutes": 20,
                "km_per_minute": 0.5,
            }
        }
    )

    @model_validator(mode="after")
    def _tiers_non_increasing(self) -> "PricingPolicy":
        if not (
            self.same_site_discount_percent
            >= self.same_area_discount_percent
            >= self.adjacent_day_discount_percent
        ):
            raise ValueError(
                "Discount tiers must satisfy same_site >= same_area >= adjacent_day"
            )
        return self

    @property
    def proximity_km(self) -> float:
        """Straight-line distance treated as within the drive-time threshold."""
        return self.max_drive_minutes * self.km_per_minute


class AllocationWeights(BaseModel):
    """
    Points awarded while scoring an engineer for a booking.

    Distance bands must shrink monotonically: closer engineers never score
    less than farther ones.
    """

    competency_points: int = Field(default=30, ge=1, le=100)
    valid_qualification_points: int = Field(default=10, ge=0, le=100)

    geo_very_close_points: int = Field(default=25, ge=0, le=100)
    geo_close_points: int = Field(default=20, ge=0, le=100)
    geo_moderate_points: int = Field(default=15, ge=0, le=100)
    geo_in_range_points: int = Field(default=10, ge=0, le=100)
    geo_prefix_match_points: int = Field(
        default=15,
        ge=0,
        le=100,
        description="Flat bonus when coverage is only known by postcode prefix"
    )
    very_close_km: float = Field(default=5.0, gt=0)
    close_km: float = Field(default=10.0, gt=0)
    moderate_km: float = Field(default=20.0, gt=0)

    availability_points: int = Field(default=20, ge=0, le=100)

    cluster_points: int = Field(
        default=15,
        ge=0,
        le=100,
        description="Engineer already has an active job nearby on the same day"
    )
    cluster_km: float = Field(default=10.0, gt=0)
    busy_day_points: int = Field(default=5, ge=0, le=100)
    busy_day_max_jobs: int = Field(default=2, ge=1, le=20)
    free_day_points: int = Field(default=10, ge=0, le=100)

    experience_points: int = Field(default=5, ge=0, le=100)
    experience_years_threshold: int = Field(default=5, ge=0, le=60)

    @model_validator(mode="after")
    def _bands_ordered(self) -> "AllocationWeights":
        if not (self.very_close_km <= self.close_km <= self.moderate_km):
            raise ValueError("Distance bands must satisfy very_close_km <= close_km <= moderate_km")
        if not (
            self.geo_very_close_points
            >= self.geo_close_points
            >= self.geo_moderate_points
            >= self.geo_in_range_points
        ):
            raise ValueError("Geographic points must decrease with distance")
        if self.cluster_points < self.busy_day_points:
            raise ValueError("Same-day cluster bonus must not be below the busy-day bonus")
        return self


class QualificationRule(BaseModel):
    """Qualifications relevant to services whose name contains a keyword."""

    service_keywords: List[str] = Field(min_length=1)
    qualification_keywords: List[str] = Field(min_length=1)


class QualificationRules(BaseModel):
    """
    Keyword table linking service names to the qualifications they require.

    A service matching no rule accepts any qualification.
    """

    rules: List[QualificationRule] = Field(
        default_factory=lambda: [
            QualificationRule(
                service_keywords=["pat"],
                qualification_keywords=["pat", "portable appliance"],
            ),
            QualificationRule(
                service_keywords=["electric", "eicr"],
                qualification_keywords=["18th", "electrical"],
            ),
        ]
    )

    def rule_for(self, service_name: str) -> Optional[QualificationRule]:
        """First rule whose service keyword occurs in the service name."""
        name = (service_name or "").lower()
        for rule in self.rules:
            if any(keyword.lower() in name for keyword in rule.service_keywords):
                return rule
        return None

    def is_relevant(self, service_name: str, qualification_name: str) -> bool:
        """Whether a qualification counts towards the given service."""
        rule = self.rule_for(service_name)
        if rule is None:
            return True
        qualification = (qualification_name or "").lower()
        return any(keyword.lower() in qualification for keyword in rule.qualification_keywords)


class FeatureFlags(BaseModel):
    """Feature flags for enabling/disabling functionality."""

    postcode_lookup_enabled: bool = Field(
        default=True,
        description="Resolve missing coordinates through the postcode service"
    )
    scheduler_v2_enabled: bool = Field(
        default=False,
        description="Route auto-allocation through the multi-objective scheduler"
    )


# Global configuration instances (can be overridden)
_pricing_policy: Optional[PricingPolicy] = None
_allocation_weights: Optional[AllocationWeights] = None
_qualification_rules: Optional[QualificationRules] = None
_feature_flags: Optional[FeatureFlags] = None


def get_pricing_policy() -> PricingPolicy:
    """
    Get pricing policy configuration.

    Returns:
        PricingPolicy instance with current settings
    """
    global _pricing_policy
    if _pricing_policy is None:
        _pricing_policy = PricingPolicy()
        logger.info("Initialized default pricing policy")
    return _pricing_policy


def set_pricing_policy(policy: PricingPolicy) -> None:
    """
    Override pricing policy configuration.

    Args:
        policy: New PricingPolicy configuration
    """
    global _pricing_policy
    _pricing_policy = policy
    logger.info("Updated pricing policy", extra={
        "same_site": policy.same_site_discount_percent,
        "same_area": policy.same_area_discount_percent,
        "adjacent_day": policy.adjacent_day_discount_percent,
    })


def get_allocation_weights() -> AllocationWeights:
    """Get allocation scoring weights."""
    global _allocation_weights
    if _allocation_weights is None:
        _allocation_weights = AllocationWeights()
        logger.info("Initialized default allocation weights")
    return _allocation_weights


def set_allocation_weights(weights: AllocationWeights) -> None:
    """Override allocation scoring weights."""
    global _allocation_weights
    _allocation_weights = weights
    logger.info("Updated allocation weights")


def get_qualification_rules() -> QualificationRules:
    """Get service-to-qualification keyword rules."""
    global _qualification_rules
    if _qualification_rules is None:
        _qualification_rules = QualificationRules()
        logger.info("Initialized default qualification rules")
    return _qualification_rules


def set_qualification_rules(rules: QualificationRules) -> None:
    """Override service-to-qualification keyword rules."""
    global _qualification_rules
    _qualification_rules = rules
    logger.info("Updated qualification rules", extra={"rule_count": len(rules.rules)})


def get_feature_flags() -> FeatureFlags:
    """Get feature flags configuration."""
    global _feature_flags
    if _feature_flags is None:
        _feature_flags = FeatureFlags()
        logger.info("Initialized default feature flags")
    return _feature_flags


def set_feature_flags(flags: FeatureFlags) -> None:
    """Override feature flags configuration."""
    global _feature_flags
    _feature_flags = flags
    logger.info("Updated feature flags")


def reset_all_configs() -> None:
    """Reset all configurations to defaults (useful for testing)."""
    global _pricing_policy, _allocation_weights, _qualification_rules, _feature_flags
    _pricing_policy = None
    _allocation_weights = None
    _qualification_rules = None
    _feature_flags = None
    logger.info("Reset all configurations to defaults")
