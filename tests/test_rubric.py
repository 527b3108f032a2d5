"""
Test: Rubric tiers — generation, criteria building, edits.
"""
import pytest

from marking_app.errors import ValidationError
from marking_app.models import Assignment, RubricCriterion
from marking_app.utils.rubric import (
    TIER_LABELS, generate_tiers, round_half, build_criteria, update_criterion, set_admin_comment,
)


def _bands(tiers):
    return [(t["name"], t["lower_bound"], t["upper_bound"]) for t in tiers]


class TestRoundHalf:
    def test_rounds_to_nearest_half(self):
        assert round_half(2.2) == 2.0
        assert round_half(2.3) == 2.5
        assert round_half(2.75) == 3.0

    def test_halves_away_from_zero(self):
        assert round_half(2.25) == 2.5
        assert round_half(-1.25) == -1.5


class TestGenerateTiers:
    def test_twenty_points(self):
        assert _bands(generate_tiers(20)) == [
            ("High Distinction", 17, 20),
            ("Distinction", 15, 16.5),
            ("Credit", 13, 14.5),
            ("Pass", 10, 12.5),
            ("Fail", 0, 9.5),
        ]

    def test_minimum_points(self):
        assert _bands(generate_tiers(2)) == [
            ("High Distinction", 2, 2),
            ("Distinction", 1.5, 1.5),
            ("Credit", 1, 1),
            ("Pass", 0.5, 0.5),
            ("Fail", 0, 0),
        ]

    @pytest.mark.parametrize("total", list(range(2, 101)))
    def test_partition_covers_zero_to_total(self, total):
        tiers = generate_tiers(total)
        assert [t["name"] for t in tiers] == TIER_LABELS
        assert tiers[0]["upper_bound"] == total
        assert tiers[-1]["lower_bound"] == 0
        for higher, lower in zip(tiers, tiers[1:]):
            assert lower["upper_bound"] == higher["lower_bound"] - 0.5
        for tier in tiers:
            assert tier["lower_bound"] <= tier["upper_bound"]
            assert float(tier["lower_bound"] * 2).is_integer()

    @pytest.mark.parametrize("total", [0, 1, -5])
    def test_below_minimum(self, total):
        with pytest.raises(ValidationError):
            generate_tiers(total)

    def test_rejects_non_numbers(self):
        with pytest.raises(ValidationError):
            generate_tiers("20")
        with pytest.raises(ValidationError):
            generate_tiers(True)


class TestBuildCriteria:
    def test_builds_criteria_with_tiers(self):
        assignment = Assignment(title="Lab")
        criteria = build_criteria(assignment, [
            {"name": "Clarity", "points": 10, "deviation": 20, "tiers": ["Excellent", "Good"]},
            {"criteria": "Method", "maxMarks": 4},
        ])
        assert len(criteria) == 2
        assert assignment.criteria == criteria

        clarity, method = criteria
        assert clarity.max_marks == 10
        assert clarity.deviation_threshold == 20.0
        assert clarity.absolute_threshold == 2.0
        assert [t.description for t in clarity.tiers] == ["Excellent", "Good", "", "", ""]
        assert method.section_name == "Method"
        assert method.deviation_threshold == 0.0
        assert [t.position for t in method.tiers] == [0, 1, 2, 3, 4]

    def test_tier_descriptions_by_name(self):
        assignment = Assignment(title="Lab")
        criterion, = build_criteria(assignment, [{
            "name": "Clarity", "points": 10,
            "tiers": [{"name": "Fail", "description": "Missing"}],
        }])
        descriptions = {t.name: t.description for t in criterion.tiers}
        assert descriptions["Fail"] == "Missing"
        assert descriptions["High Distinction"] == ""

    @pytest.mark.parametrize("payload", [
        [],
        None,
        [{"name": "", "points": 10}],
        [{"name": "A", "points": 1}],
        [{"name": "A", "points": "ten"}],
        [{"name": "A", "points": 2.5}],
        [{"name": "A", "points": 10, "deviation": 150}],
        [{"name": "A", "points": 10, "deviation": "lots"}],
        [{"name": "A", "points": 10, "deviation": "nan"}],
        [{"name": "A", "points": 10, "deviation": "inf"}],
        [{"name": "A", "points": 10, "deviation": float("nan")}],
        [{"name": 5, "points": 10}],
        [{"name": ["A"], "points": 10}],
        [{"name": "A", "points": 10, "description": {"text": "B"}}],
        ["A"],
    ])
    def test_invalid_payload(self, payload):
        with pytest.raises(ValidationError):
            build_criteria(Assignment(title="Lab"), payload)


class TestUpdateCriterion:
    def _criterion(self):
        assignment = Assignment(title="Lab")
        criterion, = build_criteria(assignment, [{
            "name": "Clarity", "points": 10, "deviation": 10,
            "tiers": ["Excellent", "Very good", "Good", "Adequate", "Poor"],
        }])
        return criterion

    def test_points_change_regenerates_and_keeps_descriptions(self):
        criterion = self._criterion()
        update_criterion(criterion, {"points": 20})
        assert criterion.max_marks == 20
        assert criterion.tiers[0].lower_bound == 17
        assert criterion.tiers[0].upper_bound == 20
        assert [t.description for t in criterion.tiers] == [
            "Excellent", "Very good", "Good", "Adequate", "Poor",
        ]

    def test_same_points_keeps_tier_rows(self):
        criterion = self._criterion()
        before = list(criterion.tiers)
        update_criterion(criterion, {"points": 10, "name": "Clarity of writing"})
        assert criterion.tiers == before
        assert criterion.section_name == "Clarity of writing"

    def test_tier_text_and_deviation(self):
        criterion = self._criterion()
        update_criterion(criterion, {"tiers": [{"name": "Pass", "description": "Just there"}], "deviation": 25})
        assert {t.name: t.description for t in criterion.tiers}["Pass"] == "Just there"
        assert criterion.absolute_threshold == 2.5

    def test_empty_name_rejected(self):
        with pytest.raises(ValidationError):
            update_criterion(self._criterion(), {"name": "  "})

    def test_empty_tier_text_clears_description(self):
        criterion = self._criterion()
        update_criterion(criterion, {"tiers": [{"name": "Pass", "description": ""}]})
        descriptions = {t.name: t.description for t in criterion.tiers}
        assert descriptions["Pass"] == ""
        assert descriptions["Credit"] == "Good"

    @pytest.mark.parametrize("payload", [
        {"deviation": "nan"},
        {"deviation": "-inf"},
        {"name": 7},
        {"description": ["x"]},
    ])
    def test_invalid_edit_leaves_criterion(self, payload):
        criterion = self._criterion()
        with pytest.raises(ValidationError):
            update_criterion(criterion, payload)
        assert criterion.section_name == "Clarity"
        assert criterion.deviation_threshold == 10.0


class TestAdminComment:
    def test_strips_and_clears(self):
        criterion = RubricCriterion(section_name="Clarity", max_marks=5)
        set_admin_comment(criterion, "  Too lenient  ")
        assert criterion.admin_comment == "Too lenient"
        set_admin_comment(criterion, "   ")
        assert criterion.admin_comment is None

    def test_non_text_rejected(self):
        criterion = RubricCriterion(section_name="Clarity", max_marks=5, admin_comment="Keep")
        with pytest.raises(ValidationError):
            set_admin_comment(criterion, 5)
        assert criterion.admin_comment == "Keep"
