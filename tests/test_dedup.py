#!/usr/bin/env python3
"""Dedup gate, retrieval index and clustering tests."""

import math
import sys
import tempfile
from pathlib import Path
from unittest import TestCase, main as unittest_main

sys.path.insert(0, str(Path(__file__).parent.parent))

from vaultmaker.config import AgentConfig
from vaultmaker.core.dedup import check_duplicate, cluster_items
from vaultmaker.core.errors import EmbeddingError
from vaultmaker.core.retrieval import RetrievalIndex, cosine_similarity
from vaultmaker.core.steps.common import StepContext, commit_note
from vaultmaker.core.storage import JsonVaultStorage
from vaultmaker.core.vault import NoteStore


class KeywordEmbedder:
    """Maps text to a fixed vector by the first keyword it contains."""

    def __init__(self, vectors: dict, default=None):
        self.vectors = vectors
        self.default = default
        self.calls = []

    def embed(self, text):
        self.calls.append(text)
        for key, vec in self.vectors.items():
            if key in text:
                return list(vec)
        if self.default is None:
            raise EmbeddingError("no vector")
        return list(self.default)


class DedupGateTests(TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.storage = JsonVaultStorage(self.tmp.name)
        self.embedder = KeywordEmbedder({"alpha": [0.99, 0.1, 0.0], "gamma": [0.0, 0.0, 1.0]})
        self.index = RetrievalIndex(self.storage, self.embedder)
        self.index.upsert("A", "Insights/A.md", "first", [1.0, 0.0, 0.0])
        self.index.upsert("B", "Insights/B.md", "second", [0.0, 1.0, 0.0])

    def tearDown(self):
        self.tmp.cleanup()

    def test_similar_candidate_rejected(self):
        decision = check_duplicate(self.index, "C", "alpha-like text", threshold=0.9)
        self.assertTrue(decision.duplicate)
        self.assertEqual(decision.match, "A")
        self.assertEqual(len(self.index), 2)

    def test_dissimilar_candidate_accepted_with_embedding(self):
        decision = check_duplicate(self.index, "C", "gamma rays", threshold=0.9)
        self.assertFalse(decision.duplicate)
        self.assertEqual(decision.embedding, [0.0, 0.0, 1.0])

    def test_identical_title_short_circuits(self):
        decision = check_duplicate(self.index, "A", "anything", threshold=0.9)
        self.assertTrue(decision.duplicate)
        self.assertEqual(decision.reason, "title")
        self.assertEqual(self.embedder.calls, [])

    def test_embedding_failure_means_not_duplicate(self):
        decision = check_duplicate(self.index, "C", "nothing matches", threshold=0.9)
        self.assertFalse(decision.duplicate)
        self.assertIsNone(decision.embedding)

    def test_index_persists_and_upserts_by_title(self):
        self.index.upsert("A", "Insights/A.md", "changed", [1.0, 0.0, 0.0])
        reloaded = RetrievalIndex(self.storage)
        self.assertEqual(reloaded.titles(), ["A", "B"])
        self.assertEqual(reloaded.get("A").text_snippet, "changed")
        self.assertTrue(reloaded.remove("B"))
        self.assertFalse(reloaded.remove("B"))

    def test_relevant_titles_vector_then_keyword(self):
        self.index.upsert("Gamma note", "Insights/Gamma note.md", "rays", [0.0, 0.0, 1.0])
        self.assertEqual(self.index.relevant_titles("gamma question", 1), ["Gamma note"])
        # Failed query embedding falls back to keywords.
        self.assertEqual(self.index.relevant_titles("second", 1), ["B"])
        self.assertEqual(self.index.relevant_titles("gamma", 1, use_embeddings=False), ["Gamma note"])

    def test_entries_in_hidden_folders_are_not_ranked(self):
        self.index.upsert("Conflict-A-vs-B", ".vaultmaker/Conflicts/Conflict-A-vs-B.md", "first second", [1.0, 0.0, 0.0])
        self.assertEqual(self.index.relevant_titles("first second", 5, use_embeddings=False), ["A", "B"])
        self.assertEqual(self.index.relevant_titles("alpha", 5), ["A", "B"])
        self.assertIsNotNone(self.index.get("Conflict-A-vs-B"))


class NearDuplicatePairTests(TestCase):
    def test_candidate_close_to_two_similar_entries_rejected(self):
        with tempfile.TemporaryDirectory() as tmp:
            index = RetrievalIndex(JsonVaultStorage(tmp), KeywordEmbedder({"alpha": [0.98, 0.2, 0.0]}))
            a = [1.0, 0.0, 0.0]
            b = [0.95, math.sqrt(1 - 0.95 ** 2), 0.0]
            index.upsert("A", "Insights/A.md", "first", a)
            index.upsert("B", "Insights/B.md", "second", b)
            self.assertAlmostEqual(cosine_similarity(a, b), 0.95, places=6)

            decision = check_duplicate(index, "C", "alpha again", threshold=0.9)

            self.assertTrue(decision.duplicate)
            self.assertEqual(decision.reason, "similarity")
            self.assertIn(decision.match, {"A", "B"})
            self.assertEqual(len(index), 2)


class CommitNoteTests(TestCase):
    def test_two_similar_candidates_only_first_stored(self):
        with tempfile.TemporaryDirectory() as tmp:
            storage = JsonVaultStorage(tmp)
            embedder = KeywordEmbedder({"sky": [1.0, 0.0]}, default=[0.0, 1.0])
            ctx = StepContext(
                notes=NoteStore(tmp),
                index=RetrievalIndex(storage, embedder),
                llm=None,
                config=AgentConfig(dedup_similarity_threshold=0.9),
                log=lambda msg: None,
                storage=storage,
            )
            first = commit_note(ctx, "Insights", "Sky is blue", "The sky is blue.", {"type": "Observation"})
            second = commit_note(ctx, "Insights", "Blue sky", "The sky looks blue.", {"type": "Observation"})
            self.assertEqual(first, "Insights/Sky is blue.md")
            self.assertIsNone(second)
            self.assertEqual(ctx.notes.note_files(), ["Insights/Sky is blue.md"])
            self.assertEqual(ctx.index.titles(), ["Sky is blue"])
            self.assertEqual(ctx.index.get("Sky is blue").embedding, [1.0, 0.0])


class ClusteringTests(TestCase):
    def test_groups_similar_items(self):
        items = [
            ("a1", [1.0, 0.0]),
            ("b1", [0.0, 1.0]),
            ("a2", [0.9, 0.1]),
            ("b2", [0.1, 0.9]),
        ]
        clusters = cluster_items(items, target_size=2, max_clusters=5)
        self.assertEqual(sorted(sorted(c) for c in clusters), [["a1", "a2"], ["b1", "b2"]])

    def test_respects_max_clusters_and_covers_everything(self):
        items = [(f"n{i}", [float(i), 1.0]) for i in range(10)]
        clusters = cluster_items(items, target_size=2, max_clusters=2)
        self.assertLessEqual(len(clusters), 2)
        self.assertEqual(sorted(k for c in clusters for k in c), sorted(k for k, _ in items))

    def test_items_without_embedding_join_first_cluster(self):
        clusters = cluster_items([("a", [1.0]), ("x", None)], target_size=5, max_clusters=3)
        self.assertEqual(clusters, [["a", "x"]])
        self.assertEqual(cluster_items([("x", None), ("y", None)], 5, 3), [["x", "y"]])
        self.assertEqual(cluster_items([], 5, 3), [])


if __name__ == "__main__":
    unittest_main()
