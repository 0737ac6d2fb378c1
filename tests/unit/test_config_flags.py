"""
Unit tests for config_flags module.
"""
import pytest

from fieldops.lib.config_flags import (
    AllocationWeights,
    FeatureFlags,
    PricingPolicy,
    QualificationRule,
    QualificationRules,
    get_allocation_weights,
    get_feature_flags,
    get_pricing_policy,
    get_qualification_rules,
    reset_all_configs,
    set_allocation_weights,
    set_feature_flags,
    set_pricing_policy,
    set_qualification_rules,
)


@pytest.mark.unit
def test_pricing_policy_defaults():
    policy = PricingPolicy()

    assert policy.same_site_discount_percent == 50
    assert policy.same_area_discount_percent == 25
    assert policy.adjacent_day_discount_percent == 10
    assert policy.max_drive_minutes == 20
    assert policy.proximity_km == 10


@pytest.mark.unit
def test_pricing_policy_rejects_inverted_tiers():
    with pytest.raises(ValueError):
        PricingPolicy(same_area_discount_percent=60)

    with pytest.raises(ValueError):
        PricingPolicy(adjacent_day_discount_percent=30)


@pytest.mark.unit
def test_pricing_policy_bounds():
    with pytest.raises(ValueError):
        PricingPolicy(same_site_discount_percent=150)
    with pytest.raises(ValueError):
        PricingPolicy(km_per_minute=0)


@pytest.mark.unit
def test_allocation_weight_defaults():
    weights = AllocationWeights()

    assert weights.competency_points == 30
    assert weights.valid_qualification_points == 10
    assert (
        weights.geo_very_close_points,
        weights.geo_close_points,
        weights.geo_moderate_points,
        weights.geo_in_range_points,
    ) == (25, 20, 15, 10)
    assert weights.geo_prefix_match_points == 15
    assert weights.availability_points == 20
    assert (weights.cluster_points, weights.busy_day_points, weights.free_day_points) == (15, 5, 10)
    assert weights.experience_points == 5
    assert weights.experience_years_threshold == 5


@pytest.mark.unit
def test_allocation_weights_keep_distance_order():
    with pytest.raises(ValueError):
        AllocationWeights(very_close_km=15, close_km=10)

    with pytest.raises(ValueError):
        AllocationWeights(geo_in_range_points=30)

    with pytest.raises(ValueError):
        AllocationWeights(cluster_points=2)


@pytest.mark.unit
def test_qualification_rules_default_table():
    rules = QualificationRules()

    assert rules.is_relevant("PAT Testing", "Portable Appliance Inspection")
    assert rules.is_relevant("PAT Testing", "City & Guilds PAT 2377")
    assert not rules.is_relevant("PAT Testing", "18th Edition Wiring Regulations")
    assert rules.is_relevant("EICR Inspection", "18th Edition Wiring Regulations")
    assert rules.is_relevant("Electrical Installation", "Electrical Inspection 2391")
    assert rules.is_relevant("Fire Alarm Service", "Anything at all")


@pytest.mark.unit
def test_qualification_rules_custom_table():
    rules = QualificationRules(rules=[
        QualificationRule(service_keywords=["gas"], qualification_keywords=["gas safe"]),
    ])

    assert rules.rule_for("Gas Boiler Check") is not None
    assert rules.is_relevant("Gas Boiler Check", "Gas Safe Register")
    assert not rules.is_relevant("Gas Boiler Check", "PAT")
    assert rules.rule_for("PAT Testing") is None


@pytest.mark.unit
def test_feature_flag_defaults():
    flags = FeatureFlags()
    assert flags.postcode_lookup_enabled is True
    assert flags.scheduler_v2_enabled is False


@pytest.mark.unit
def test_get_set_and_reset():
    set_pricing_policy(PricingPolicy(same_site_discount_percent=40))
    set_allocation_weights(AllocationWeights(competency_points=40))
    set_qualification_rules(QualificationRules(rules=[]))
    set_feature_flags(FeatureFlags(postcode_lookup_enabled=False))

    assert get_pricing_policy().same_site_discount_percent == 40
    assert get_allocation_weights().competency_points == 40
    assert get_qualification_rules().rules == []
    assert get_feature_flags().postcode_lookup_enabled is False

    reset_all_configs()

    assert get_pricing_policy().same_site_discount_percent == 50
    assert get_allocation_weights().competency_points == 30
    assert len(get_qualification_rules().rules) == 2
    assert get_feature_flags().postcode_lookup_enabled is True


@pytest.mark.unit
def test_getters_return_singletons():
    assert get_pricing_policy() is get_pricing_policy()
    assert get_feature_flags() is get_feature_flags()
