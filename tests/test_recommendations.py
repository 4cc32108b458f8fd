"""Tests for the recommendation generator."""

from clinical_calculators.clinical_risk_calculator.models import (
    FactorRecommendation,
    RecommendationRules,
)
from clinical_calculators.clinical_risk_calculator.recommendations import recommend


class TestRecommend:
    """Tests for ordering, factor rules and de-duplication."""

    def test_order_base_category_factor(self):
        """Test base, then category, then factor identifiers."""
        rules = RecommendationRules(
            base=("base.a",),
            by_category={"high": ("high.a", "high.b")},
            by_factor=(FactorRecommendation(when={"smoker": True}, add=("factor.smoking",)),),
        )
        assert recommend(rules, "high", {"smoker": True}, 30.0) == [
            "base.a",
            "high.a",
            "high.b",
            "factor.smoking",
        ]

    def test_duplicates_keep_first_position(self):
        """Test repeated identifiers are dropped after their first occurrence."""
        rules = RecommendationRules(
            base=("shared", "base.only"),
            by_category={"low": ("shared", "low.only")},
            by_factor=(FactorRecommendation(add=("low.only", "factor.only")),),
        )
        assert recommend(rules, "low", {}, 1.0) == ["shared", "base.only", "low.only", "factor.only"]

    def test_unmatched_factor(self):
        """Test factor rules need every condition to hold."""
        rules = RecommendationRules(
            by_factor=(FactorRecommendation(when={"smoker": True, "sex": "male"}, add=("x",)),),
        )
        assert recommend(rules, "low", {"smoker": True, "sex": "female"}, 1.0) == []

    def test_unknown_category_has_no_category_set(self):
        """Test a category without a set contributes nothing."""
        rules = RecommendationRules(base=("b",), by_category={"high": ("h",)})
        assert recommend(rules, "low", {}, 0.0) == ["b"]

    def test_ascvd_aspirin_needs_ten_percent(self, registry):
        """Test the aspirin identifier appears from a final value of 10."""
        rules = registry.get("ascvd").recommendations
        values = {"smoker": False, "diabetes": False}
        assert "ascvd.aspirin_consideration" not in recommend(rules, "intermediate", values, 9.99)
        assert "ascvd.aspirin_consideration" in recommend(rules, "intermediate", values, 10.0)

    def test_maggic_therapy_gaps(self, registry):
        """Test missing therapies produce initiation identifiers."""
        rules = registry.get("maggic").recommendations
        values = {"beta_blocker": False, "ace_inhibitor": True, "diabetes": False, "copd": False}
        assert recommend(rules, "low", values, 5.0) == [
            "maggic.guideline_directed_therapy",
            "maggic.routine_follow_up",
            "maggic.initiate_beta_blocker",
        ]
