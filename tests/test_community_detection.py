"""Tests for Louvain community detection and the detection pipeline."""

import json

import pytest
from conftest import FakeLLM, add_relations

from kgrag.community_detection import (CommunityDetector, LouvainDetector,
                                       create_detector, group_by_community)
from kgrag.community_summarizer import CommunitySummarizer
from kgrag.graph_export import GraphData


def make_graph(entities, edges):
    data = GraphData()
    for entity_id in entities:
        data.add_entity(entity_id)
    for source, target in edges:
        data.add_edge(data.entity_to_idx[source], data.entity_to_idx[target])
    return data


TWO_TRIANGLES = make_graph(
    ["0", "1", "2", "3", "4", "5"],
    [("0", "1"), ("1", "2"), ("2", "0"), ("3", "4"), ("4", "5"), ("5", "3"), ("2", "3")],
)


class TestLouvainDetector:
    def test_empty_graph_returns_empty_mapping(self):
        assert LouvainDetector(GraphData()).detect_communities() == {}

    def test_edgeless_graph_keeps_singletons(self):
        graph = make_graph(["a", "b", "c"], [])
        detector = LouvainDetector(graph)

        assert detector.detect_communities() == {"a": 0, "b": 1, "c": 2}
        assert detector.iterations == 0

    def test_disjoint_pairs(self):
        graph = make_graph(["A", "B", "C", "D"], [("A", "B"), ("C", "D")])
        assert LouvainDetector(graph).detect_communities() == {"A": 0, "B": 0, "C": 1, "D": 1}

    def test_two_triangles_split_at_bridge(self):
        communities = LouvainDetector(TWO_TRIANGLES).detect_communities()

        assert communities["0"] == communities["1"] == communities["2"]
        assert communities["3"] == communities["4"] == communities["5"]
        assert communities["0"] != communities["3"]

    def test_ids_are_contiguous_from_zero(self):
        communities = LouvainDetector(TWO_TRIANGLES).detect_communities()
        assert sorted(set(communities.values())) == [0, 1]

    def test_covers_every_entity(self):
        communities = LouvainDetector(TWO_TRIANGLES).detect_communities()
        assert set(communities) == set(TWO_TRIANGLES.entities)

    def test_repeated_runs_agree(self):
        first = LouvainDetector(TWO_TRIANGLES).detect_communities()
        second = LouvainDetector(TWO_TRIANGLES).detect_communities()
        assert first == second

    def test_iteration_cap(self):
        detector = LouvainDetector(TWO_TRIANGLES, max_iterations=1)
        detector.detect_communities()
        assert detector.iterations == 1

        detector = LouvainDetector(TWO_TRIANGLES, max_iterations=10)
        detector.detect_communities()
        assert 1 <= detector.iterations <= 10

    def test_group_by_community_orders_by_id(self):
        groups = group_by_community({"x": 1, "y": 0, "z": 1})
        assert list(groups) == [0, 1]
        assert groups[1] == ["x", "z"]


class TestCommunityDetector:
    @pytest.mark.asyncio
    async def test_detect_on_empty_store(self, graph_store):
        assert await CommunityDetector(graph_store).detect() == {}

    @pytest.mark.asyncio
    async def test_detect_writes_assignment(self, graph_store):
        await add_relations(graph_store, [("a", "r", "b"), ("c", "r", "d")])

        communities = await CommunityDetector(graph_store).detect()

        for entity_id, community_id in communities.items():
            assert graph_store.graph.nodes[entity_id]["community_id"] == community_id

    @pytest.mark.asyncio
    async def test_detect_and_summarize_requires_summarizer(self, graph_store):
        with pytest.raises(ValueError):
            await CommunityDetector(graph_store).detect_and_summarize()

    @pytest.mark.asyncio
    async def test_detect_and_summarize_writes_one_file_per_community(self, graph_store, tmp_path):
        await graph_store.upsert_entity("a", "Alpha", "CONCEPT", "first")
        await add_relations(graph_store, [("a", "r", "b"), ("c", "r", "d")])
        (tmp_path / "community_9.json").write_text("{}")

        llm = FakeLLM(responses=["SUMMARY: pair one", "pair two"])
        detector = CommunityDetector(graph_store, summarizer=CommunitySummarizer(llm))
        summaries = await detector.detect_and_summarize(tmp_path, show_progress=False)

        assert [s.community_id for s in summaries] == [0, 1]
        assert summaries[0].summary == "pair one"
        assert summaries[0].key_entities == ["Alpha", "b"]
        assert sorted(p.name for p in tmp_path.iterdir()) == [
            "community_0.json",
            "community_1.json",
        ]
        saved = json.loads((tmp_path / "community_1.json").read_text())
        assert saved["summary"] == "pair two"
        assert saved["entity_count"] == 2

    def test_create_detector_reads_config(self, cfg, graph_store):
        detector = create_detector(cfg, graph_store)
        assert detector.max_iterations == cfg.COMMUNITY.max_iterations
        assert detector.relation_limit == cfg.COMMUNITY.relation_limit
