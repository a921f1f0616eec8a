"""Tests for predicate evaluation."""

import pytest

from salesflow.core.conditions import evaluate, resolve_path, validate_predicate, values_equal


class TestResolvePath:

    def test_nested_mapping(self):
        context = {"lead": {"company": {"size": 250}}}
        assert resolve_path(context, "lead.company.size") == 250

    def test_missing_segment_is_none(self):
        assert resolve_path({"lead": {}}, "lead.company.size") is None
        assert resolve_path({}, "anything") is None
        assert resolve_path(None, "anything") is None

    def test_list_index(self):
        context = {"deals": [{"id": "d1"}, {"id": "d2"}]}
        assert resolve_path(context, "deals.1.id") == "d2"
        assert resolve_path(context, "deals.5.id") is None

    def test_string_is_not_indexed(self):
        assert resolve_path({"name": "acme"}, "name.0") is None


class TestEvaluate:

    def test_empty_predicate_always_passes(self):
        assert evaluate(None, {"leadScore": 10})
        assert evaluate({}, {})

    @pytest.mark.parametrize("score,expected", [(85, True), (80, True), (75, False)])
    def test_gte(self, score, expected):
        assert evaluate({"leadScore": {"gte": 80}}, {"leadScore": score}) is expected

    def test_lte_and_range(self):
        predicate = {"strength": {"gte": 0.5, "lte": 0.9}}
        assert evaluate(predicate, {"strength": 0.7})
        assert not evaluate(predicate, {"strength": 0.95})

    def test_literal_equality(self):
        predicate = {"callOutcome": "positive", "followUpRequired": True}
        assert evaluate(predicate, {"callOutcome": "positive", "followUpRequired": True})
        assert not evaluate(predicate, {"callOutcome": "positive", "followUpRequired": False})
        assert not evaluate(predicate, {"callOutcome": "positive"})

    def test_eq_and_neq(self):
        assert evaluate({"day": {"eq": "monday"}}, {"day": "monday"})
        assert evaluate({"day": {"neq": "monday"}}, {"day": "tuesday"})
        assert not evaluate({"day": {"neq": "monday"}}, {"day": "monday"})

    def test_in(self):
        predicate = {"stage": {"in": ["proposal", "negotiation"]}}
        assert evaluate(predicate, {"stage": "proposal"})
        assert not evaluate(predicate, {"stage": "closed"})

    def test_missing_field_fails_comparison(self):
        assert not evaluate({"leadScore": {"gte": 80}}, {})

    def test_incomparable_types_fail_instead_of_raising(self):
        assert not evaluate({"leadScore": {"gte": 80}}, {"leadScore": "high"})

    def test_booleans_are_not_numbers(self):
        assert not evaluate({"flag": 1}, {"flag": True})
        assert not evaluate({"count": {"gte": 0}}, {"count": True})
        assert not values_equal(0, False)

    def test_dotted_path(self):
        assert evaluate({"lead.score": {"gte": 50}}, {"lead": {"score": 60}})

    def test_plain_mapping_value_is_compared_literally(self):
        predicate = {"owner": {"name": "sam"}}
        assert evaluate(predicate, {"owner": {"name": "sam"}})
        assert not evaluate(predicate, {"owner": {"name": "alex"}})


class TestValidatePredicate:

    def test_valid_predicate(self):
        assert validate_predicate({"leadScore": {"gte": 80}, "day": "monday"}) == []
        assert validate_predicate(None) == []

    def test_non_mapping(self):
        errors = validate_predicate(["leadScore"], "triggers[0].conditions")
        assert len(errors) == 1
        assert errors[0].startswith("triggers[0].conditions")

    def test_unknown_operator_mixed_with_known(self):
        errors = validate_predicate({"leadScore": {"gte": 80, "between": [1, 2]}})
        assert len(errors) == 1
        assert "between" in errors[0]

    def test_in_requires_list(self):
        errors = validate_predicate({"stage": {"in": "proposal"}})
        assert errors == ["conditions.stage: 'in' operand must be a list"]
