"""
Structural Truth Reconciliation Tests
Rules 1-5, mutation logging, idempotence and the copy variant.
"""
import math

from core.protocols import GoalConstraint, payload_get
from validation.config import ReconciliationOptions
from validation.graph_validator import validate_graph
from validation.reconciliation import (
    RULE_CATEGORY_OVERRIDE,
    RULE_CONSTRAINT_TARGET,
    RULE_CONTROLLABLE_DATA,
    RULE_ENUM_VALIDATION,
    RULE_SIGN_RECONCILIATION,
    reconcile_structural_truth,
    reconcile_structural_truth_copy,
)
from graph_factories import make_graph, minimal_valid_graph, rich_valid_graph, with_edge, with_node


def node(graph, node_id):
    return next(n for n in graph.nodes if n.id == node_id)


def edge(graph, src, dst):
    return next(e for e in graph.edges if e.from_ == src and e.to == dst)


class TestCleanGraph:

    def test_no_mutations_on_consistent_graph(self):
        graph = make_graph(rich_valid_graph())
        before = graph.model_dump()
        result = reconcile_structural_truth(graph)
        assert result.mutations == []
        assert result.rules_triggered == []
        assert graph.model_dump() == before

    def test_returns_the_same_graph_object(self):
        graph = make_graph()
        assert reconcile_structural_truth(graph).graph is graph


class TestCategoryOverride:
    """Rule 1: declared category follows structure."""

    def test_declared_observable_with_option_edge(self):
        payload = minimal_valid_graph()
        with_node(payload, "fac_price")["category"] = "observable"
        graph = make_graph(payload)
        result = reconcile_structural_truth(graph)

        assert node(graph, "fac_price").category == "controllable"
        [mutation] = result.mutations
        assert mutation.rule == RULE_CATEGORY_OVERRIDE
        assert mutation.code == "CATEGORY_OVERRIDE"
        assert (mutation.before, mutation.after) == ("observable", "controllable")
        assert mutation.field == "category"
        assert mutation.reason == "Structural inference: has option edge -> controllable"

    def test_promotion_fills_controllable_fields(self):
        payload = minimal_valid_graph()
        fac = with_node(payload, "fac_price")
        fac["category"] = "external"
        fac["data"] = {"value": 150, "extractionType": "explicit"}
        graph = make_graph(payload)
        [mutation] = reconcile_structural_truth(graph).mutations

        data = node(graph, "fac_price").data
        assert data.factor_type == "other"
        assert data.uncertainty_drivers == ["Estimation uncertainty"]
        assert "filled factor_type" in mutation.reason
        assert "filled uncertainty_drivers" in mutation.reason
        assert validate_graph(graph).valid

    def test_promotion_creates_missing_payload(self):
        payload = minimal_valid_graph()
        fac = with_node(payload, "fac_price")
        del fac["data"]
        fac["category"] = "observable"
        graph = make_graph(payload)
        reconcile_structural_truth(graph)
        assert payload_get(node(graph, "fac_price").data, "factor_type") == "other"

    def test_demotion_strips_controllable_fields(self):
        payload = rich_valid_graph()
        demand = with_node(payload, "fac_demand")
        demand["category"] = "controllable"
        demand["data"].update(factor_type="demand", uncertainty_drivers=["seasonality"])
        graph = make_graph(payload)
        [mutation] = reconcile_structural_truth(graph).mutations

        data = node(graph, "fac_demand").data
        assert node(graph, "fac_demand").category == "observable"
        assert data.factor_type is None
        assert data.uncertainty_drivers is None
        assert data.value == 1200
        assert "stripped factor_type" in mutation.reason
        assert "factor_type" not in with_node(graph.to_dict(), "fac_demand")["data"]
        assert validate_graph(graph).valid

    def test_absent_category_is_filled(self):
        payload = rich_valid_graph()
        del with_node(payload, "fac_market")["category"]
        graph = make_graph(payload)
        [mutation] = reconcile_structural_truth(graph).mutations
        assert (mutation.before, mutation.after) == (None, "external")
        assert mutation.reason == "Structural inference: no option edge, no value -> external"

    def test_unknown_category_value_is_overridden(self):
        payload = rich_valid_graph()
        with_node(payload, "fac_demand")["category"] = "semi-controllable"
        graph = make_graph(payload)
        reconcile_structural_truth(graph)
        assert node(graph, "fac_demand").category == "observable"

    def test_clears_category_mismatch(self):
        payload = minimal_valid_graph()
        with_node(payload, "fac_price")["category"] = "observable"
        graph = make_graph(payload)
        assert "CATEGORY_MISMATCH" in validate_graph(graph).error_codes
        reconcile_structural_truth(graph)
        assert validate_graph(graph).valid


class TestEnumValidation:
    """Rule 2: out-of-vocabulary enum values replaced with safe defaults."""

    def test_factor_enums(self):
        payload = minimal_valid_graph()
        with_node(payload, "fac_price")["data"].update(factor_type="banana", extractionType="guessed")
        graph = make_graph(payload)
        mutations = reconcile_structural_truth(graph).mutations

        assert [(m.field, m.before, m.after) for m in mutations] == [
            ("data.factor_type", "banana", "other"),
            ("data.extractionType", "guessed", "inferred"),
        ]
        assert all(m.rule == RULE_ENUM_VALIDATION and m.severity == "warn" for m in mutations)
        assert all(m.node_id == "fac_price" for m in mutations)
        assert "valid: cost, demand" in mutations[0].reason

    def test_edge_direction(self):
        payload = minimal_valid_graph()
        with_edge(payload, "fac_price", "outcome_1")["effect_direction"] = "up"
        graph = make_graph(payload)
        [mutation] = reconcile_structural_truth(graph).mutations
        assert mutation.edge_id == "fac_price::outcome_1"
        assert (mutation.before, mutation.after) == ("up", "positive")

    def test_direction_default_then_sign_fix(self):
        payload = rich_valid_graph()
        with_edge(payload, "risk_churn", "goal_1")["effect_direction"] = "down"
        graph = make_graph(payload)
        result = reconcile_structural_truth(graph)
        assert result.rules_triggered == [RULE_ENUM_VALIDATION, RULE_SIGN_RECONCILIATION]
        assert edge(graph, "risk_churn", "goal_1").effect_direction == "negative"

    def test_absent_fields_untouched(self):
        payload = rich_valid_graph()
        graph = make_graph(payload)
        reconcile_structural_truth(graph)
        assert node(graph, "fac_demand").data.factor_type is None

    def test_blank_factor_type_is_replaced(self):
        payload = minimal_valid_graph()
        with_node(payload, "fac_price")["data"]["factor_type"] = ""
        graph = make_graph(payload)
        assert reconcile_structural_truth(graph).mutations[0].before == ""


class TestConstraintTarget:
    """Rule 3: constraints naming missing nodes are remapped or dropped."""

    def test_remap_and_drop_in_caller_list(self):
        payload = rich_valid_graph()
        constraints = [
            {"constraint_id": "c1", "node_id": "fac_price", "operator": "<=", "value": 200},
            {"constraint_id": "c2", "node_id": "fac_baseline_demand", "operator": ">=", "value": 1000},
            {"constraint_id": "c3", "node_id": "fac_headcount", "operator": "<=", "value": 10},
        ]
        graph = make_graph(payload)
        result = reconcile_structural_truth(graph, ReconciliationOptions(goal_constraints=constraints))

        assert [c["node_id"] for c in constraints] == ["fac_price", "fac_demand"]
        assert result.goal_constraints is constraints
        remapped, dropped = result.mutations
        assert remapped.rule == RULE_CONSTRAINT_TARGET
        assert (remapped.code, remapped.constraint_id) == ("CONSTRAINT_REMAPPED", "c2")
        assert (remapped.before, remapped.after) == ("fac_baseline_demand", "fac_demand")
        assert (dropped.code, dropped.constraint_id, dropped.after) == ("CONSTRAINT_DROPPED", "c3", None)

    def test_model_constraints(self):
        constraints = [GoalConstraint(node_id="fac_prices", constraint_id="c1")]
        graph = make_graph()
        reconcile_structural_truth(graph, ReconciliationOptions(goal_constraints=constraints))
        assert constraints[0].node_id == "fac_price"

    def test_label_override_map(self):
        constraints = [{"node_id": "fac_total_sales"}]
        graph = make_graph(rich_valid_graph())
        reconcile_structural_truth(graph, ReconciliationOptions(
            goal_constraints=constraints,
            node_labels={"fac_demand": "Total sales volume"},
        ))
        assert constraints == [{"node_id": "fac_demand"}]

    def test_rule_skipped_without_constraints(self):
        result = reconcile_structural_truth(make_graph(), ReconciliationOptions(goal_constraints=[]))
        assert result.mutations == []


class TestSignReconciliation:
    """Rule 4: effect_direction follows the sign of the mean."""

    def test_positive_label_negative_mean(self):
        payload = rich_valid_graph()
        with_edge(payload, "risk_churn", "goal_1")["effect_direction"] = "positive"
        graph = make_graph(payload)
        [mutation] = reconcile_structural_truth(graph).mutations
        assert mutation.rule == RULE_SIGN_RECONCILIATION
        assert mutation.code == "SIGN_CORRECTED"
        assert (mutation.before, mutation.after) == ("positive", "negative")
        assert mutation.severity == "warn"

    def test_uses_legacy_weight(self):
        payload = minimal_valid_graph()
        legacy = with_edge(payload, "fac_price", "outcome_1")
        del legacy["strength_mean"]
        legacy.update(weight=0.4, effect_direction="negative")
        graph = make_graph(payload)
        reconcile_structural_truth(graph)
        assert edge(graph, "fac_price", "outcome_1").effect_direction == "positive"

    def test_zero_missing_and_non_finite_means_skipped(self):
        payload = minimal_valid_graph()
        with_edge(payload, "fac_price", "outcome_1").update(strength_mean=0.0, effect_direction="negative")
        with_edge(payload, "outcome_1", "goal_1").update(strength_mean=math.nan, effect_direction="negative")
        with_edge(payload, "decision_1", "opt_a")["effect_direction"] = None
        graph = make_graph(payload)
        assert reconcile_structural_truth(graph).mutations == []


class TestControllableData:
    """Rule 5: opt-in fill of factor_type and uncertainty_drivers."""

    def _sparse_graph(self):
        payload = minimal_valid_graph()
        with_node(payload, "fac_price")["data"] = {"value": 150, "extractionType": "explicit"}
        return make_graph(payload)

    def test_off_by_default(self):
        graph = self._sparse_graph()
        assert reconcile_structural_truth(graph).mutations == []
        assert "CONTROLLABLE_MISSING_DATA" in validate_graph(graph).error_codes

    def test_fills_when_enabled(self):
        graph = self._sparse_graph()
        result = reconcile_structural_truth(graph, ReconciliationOptions(fill_controllable_data=True))
        assert [(m.rule, m.field, m.before, m.after) for m in result.mutations] == [
            (RULE_CONTROLLABLE_DATA, "data.factor_type", None, "other"),
            (RULE_CONTROLLABLE_DATA, "data.uncertainty_drivers", None, ["Estimation uncertainty"]),
        ]
        assert validate_graph(graph).valid

    def test_never_overwrites(self):
        graph = make_graph()
        result = reconcile_structural_truth(graph, ReconciliationOptions(fill_controllable_data=True))
        assert result.mutations == []
        assert node(graph, "fac_price").data.factor_type == "price"


class TestPassProperties:

    def _messy_payload(self):
        payload = rich_valid_graph()
        with_node(payload, "fac_price")["category"] = "external"
        with_node(payload, "fac_price")["data"] = {"value": 150, "extractionType": "explicit",
                                                   "factor_type": "widget"}
        with_node(payload, "fac_demand")["category"] = "controllable"
        with_node(payload, "fac_demand")["data"]["uncertainty_drivers"] = ["seasonality"]
        with_edge(payload, "risk_churn", "goal_1")["effect_direction"] = "positive"
        return payload

    def test_second_pass_is_a_no_op(self):
        graph = make_graph(self._messy_payload())
        constraints = [{"node_id": "fac_baseline_demand"}, {"node_id": "fac_xyz"}]
        options = ReconciliationOptions(fill_controllable_data=True, goal_constraints=constraints)
        first = reconcile_structural_truth(graph, options)
        assert first.mutations
        snapshot = graph.model_dump()
        second = reconcile_structural_truth(graph, options)
        assert second.mutations == []
        assert graph.model_dump() == snapshot

    def test_result_validates(self):
        graph = make_graph(self._messy_payload())
        reconcile_structural_truth(graph)
        result = validate_graph(graph)
        assert result.valid, result.error_codes

    def test_copy_leaves_inputs_untouched(self):
        graph = make_graph(self._messy_payload())
        constraints = [{"node_id": "fac_baseline_demand"}]
        before = graph.model_dump()
        result = reconcile_structural_truth_copy(
            graph, ReconciliationOptions(goal_constraints=constraints))

        assert result.graph is not graph
        assert graph.model_dump() == before
        assert constraints == [{"node_id": "fac_baseline_demand"}]
        assert result.goal_constraints == [{"node_id": "fac_demand"}]
        assert node(result.graph, "fac_price").category == "controllable"
