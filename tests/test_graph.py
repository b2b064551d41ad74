"""Tests for the import graph and cycle detection."""

from dependency_audit.graph import ImportGraph, cycle_severity
from dependency_audit.models import (
    ExternalModule,
    ImportKind,
    ImportReference,
    LanguageKind,
    LocalModule,
    SourceFile,
)


def _graph(edges, nodes=None):
    graph = ImportGraph(nodes or sorted({node for edge in edges for node in edge}))
    for source, target in edges:
        graph.add_edge(source, target)
    return graph


def test_three_node_cycle_reported_once():
    graph = _graph([("/p/b.js", "/p/c.js"), ("/p/c.js", "/p/a.js"), ("/p/a.js", "/p/b.js")])

    assert graph.find_cycles() == [["/p/a.js", "/p/b.js", "/p/c.js"]]


def test_acyclic_and_empty_graphs():
    assert ImportGraph().find_cycles() == []
    assert _graph([("a", "b"), ("b", "c"), ("a", "c")]).find_cycles() == []


def test_self_import_and_two_cycles():
    graph = _graph([("a", "a"), ("b", "c"), ("c", "b"), ("c", "d")])
    assert graph.find_cycles() == [["a"], ["b", "c"]]


def test_edges_need_both_endpoints():
    graph = ImportGraph(["a"])
    assert not graph.add_edge("a", "outside")
    assert list(graph.edges()) == []


def test_entry_points():
    graph = _graph([("main", "a"), ("a", "b"), ("b", "a"), ("other", "b"), ("a", "leaf")])
    assert graph.entry_points(["a", "b"]) == ["main", "other"]


def test_from_sources_uses_local_references_only():
    a = SourceFile("/p/a.js", LanguageKind.SCRIPT, (
        ImportReference("./b", ImportKind.STATIC_IMPORT, "/p/a.js", 1, LocalModule("/p/b.js")),
        ImportReference("react", ImportKind.STATIC_IMPORT, "/p/a.js", 2, ExternalModule("react")),
        ImportReference("./gone", ImportKind.STATIC_IMPORT, "/p/a.js", 3, LocalModule("/p/gone")),
    ))
    b = SourceFile("/p/b.js", LanguageKind.SCRIPT)

    graph = ImportGraph.from_sources([a, b])

    assert list(graph.edges()) == [("/p/a.js", "/p/b.js")]
    assert graph.to_dict("/p") == {
        "nodes": ["a.js", "b.js"],
        "edges": [{"from": "a.js", "to": "b.js"}],
    }


def test_cycle_severity():
    assert cycle_severity(2) == "high"
    assert cycle_severity(5) == "medium"
    assert cycle_severity(6) == "low"
