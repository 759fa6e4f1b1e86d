import pytest

from leadflow.core.graph import WorkflowDefinitionError, WorkflowGraph, validate_workflow
from leadflow.core.models import NodeType


def definition(nodes, edges=None):
    return {"nodes": nodes, "edges": edges or []}


TRIGGER = {"id": "start", "type": "trigger", "data": {}}


def test_valid_workflow():
    wf = definition(
        [
            TRIGGER,
            {"id": "mail", "type": "email", "data": {"subject": "Hi"}},
            {"id": "wait", "type": "delay", "data": {"delayHours": 24}},
        ],
        [
            {"source": "start", "target": "mail"},
            {"source": "mail", "target": "wait"},
        ],
    )
    assert validate_workflow(wf) == []


def test_valid_workflow_without_edges():
    assert validate_workflow({"nodes": [TRIGGER]}) == []


def test_missing_nodes():
    errors = validate_workflow({"edges": []})
    assert any("'nodes'" in e for e in errors)


def test_empty_nodes():
    errors = validate_workflow(definition([]))
    assert any("non-empty" in e for e in errors)


def test_edges_must_be_list():
    errors = validate_workflow({"nodes": [TRIGGER], "edges": {"a": "b"}})
    assert any("'edges'" in e for e in errors)


def test_duplicate_node_ids():
    errors = validate_workflow(definition([TRIGGER, {"id": "start", "type": "email"}]))
    assert any("Duplicate" in e for e in errors)


def test_missing_node_fields():
    errors = validate_workflow(definition([TRIGGER, {"type": "email"}, {"id": "x"}]))
    assert any("'id'" in e for e in errors)
    assert any("'type'" in e for e in errors)


def test_unknown_node_type():
    errors = validate_workflow(definition([TRIGGER, {"id": "fax", "type": "fax"}]))
    assert any("unknown type" in e for e in errors)


def test_no_trigger():
    errors = validate_workflow(definition([{"id": "mail", "type": "email"}]))
    assert "No trigger node found" in errors


def test_unknown_edge_endpoints():
    errors = validate_workflow(
        definition([TRIGGER], [{"source": "start", "target": "ghost"}, {"source": "start"}])
    )
    assert any("unknown target node: 'ghost'" in e for e in errors)
    assert any("'source' and 'target'" in e for e in errors)


def test_from_definition_rejects_invalid_graph():
    with pytest.raises(WorkflowDefinitionError) as exc_info:
        WorkflowGraph.from_definition(definition([{"id": "mail", "type": "email"}]))
    assert exc_info.value.errors == ["No trigger node found"]


def test_edge_lookup_by_handle_and_order():
    graph = WorkflowGraph.from_definition(
        definition(
            [
                TRIGGER,
                {"id": "check", "type": "condition"},
                {"id": "yes", "type": "email"},
                {"id": "no", "type": "email"},
            ],
            [
                {"source": "start", "target": "check"},
                {"source": "check", "target": "no", "sourceHandle": "false"},
                {"source": "check", "target": "yes", "label": "TRUE"},
            ],
        )
    )
    assert graph.trigger_node().id == "start"
    assert graph.nodes["check"].type == NodeType.CONDITION
    assert graph.next_node_id("start") == "check"
    assert graph.next_node_id("check") == "no"
    assert graph.branch_target("check", "true") == "yes"
    assert graph.branch_target("check", "False") == "no"
    assert graph.branch_target("start", "true") is None
    assert graph.next_node_id("yes") is None


def test_unreachable_nodes():
    graph = WorkflowGraph.from_definition(
        definition(
            [
                TRIGGER,
                {"id": "a", "type": "email"},
                {"id": "orphan", "type": "email"},
                {"id": "orphan_child", "type": "delay"},
            ],
            [
                {"source": "start", "target": "a"},
                {"source": "orphan", "target": "orphan_child"},
            ],
        )
    )
    assert graph.reachable_from("start") == {"start", "a"}
    assert graph.unreachable_nodes() == ["orphan", "orphan_child"]


def test_definition_round_trip_keeps_handles():
    source = definition(
        [TRIGGER, {"id": "check", "type": "condition", "data": {"field": "x"}}],
        [{"id": "e1", "source": "start", "target": "check", "sourceHandle": "out"}],
    )
    rebuilt = WorkflowGraph.from_definition(WorkflowGraph.from_definition(source).to_definition())
    assert rebuilt.nodes["check"].data == {"field": "x"}
    assert rebuilt.edges[0].source_handle == "out"
    assert rebuilt.edges[0].id == "e1"
