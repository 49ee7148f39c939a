#!/usr/bin/env python3
"""Generation step tests: organize, link, deduce, induce and validate against scripted replies."""

import json
import sys
import tempfile
from pathlib import Path
from unittest import TestCase, main as unittest_main

sys.path.insert(0, str(Path(__file__).parent.parent))

from vaultmaker.config import AgentConfig
from vaultmaker.core.retrieval import RetrievalIndex
from vaultmaker.core.steps.common import StepContext
from vaultmaker.core.steps.deduce import deduce_for_note, premise_index
from vaultmaker.core.steps.induce import induce_for_moc
from vaultmaker.core.steps.link import link_note
from vaultmaker.core.steps.organize import REORGANIZE_PASS, organize_vault
from vaultmaker.core.steps.validate import find_contradictions, find_orphans, run_validation
from vaultmaker.core.storage import JsonVaultStorage
from vaultmaker.core.tasks import InducePayload
from vaultmaker.core.vault import NoteStore, render_note


class ScriptedLLM:
    """Replies by system-prompt marker; records (system, user) for every call."""

    def __init__(self, replies):
        self.replies = replies
        self.calls = []

    def complete(self, messages, max_tokens=4096):
        system, user = messages[0]["content"], messages[-1]["content"]
        self.calls.append((system, user))
        for marker, reply in self.replies.items():
            if marker in system:
                return reply(user) if callable(reply) else reply
        return "{}"

    def users(self, marker):
        return [user for system, user in self.calls if marker in system]


class StepTestCase(TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.storage = JsonVaultStorage(self.tmp.name)
        self.notes = NoteStore(self.tmp.name)
        self.index = RetrievalIndex(self.storage)
        self.lines = []

    def tearDown(self):
        self.tmp.cleanup()

    def context(self, llm) -> StepContext:
        return StepContext(
            notes=self.notes,
            index=self.index,
            llm=llm,
            config=AgentConfig(use_embeddings=False),
            log=self.lines.append,
            storage=self.storage,
        )

    def add_note(self, title, body, note_type=None):
        rel = f"Insights/{title}.md"
        self.notes.write(rel, render_note(body, {"type": note_type} if note_type else None))
        self.index.index_note(title, rel, body)
        return rel


class OrganizeTests(StepTestCase):
    def setUp(self):
        super().setUp()
        self.add_note("A", "Sky is blue.", "Conclusion")
        self.add_note("B", "Sea is blue.", "Observation")
        self.add_note("C", "Grass is green.")
        self.llm = ScriptedLLM({
            "organizing an Obsidian": json.dumps({"mocs": [
                {"title": "Blue things", "noteTitles": ["A", "B", "Ghost"]},
                {"title": "", "noteTitles": ["C"]},
            ]}),
            "executive summaries": "Notes about blue things.",
        })

    def test_writes_moc_with_members_and_summary(self):
        created = organize_vault(self.context(self.llm))

        self.assertEqual(created, ["MOCs/Blue things.md"])
        mocs = self.notes.moc_list()
        self.assertEqual(len(mocs), 1)
        self.assertEqual(mocs[0]["noteTitles"], ["A", "B"])
        self.assertEqual(mocs[0]["summary"], "Notes about blue things.")
        self.assertIn("Blue things", self.llm.users("executive summaries")[0])

        prompt = self.llm.users("organizing an Obsidian")[0]
        self.assertIn("- A (type: Conclusion)", prompt)
        self.assertNotIn("High-gravity", prompt)

    def test_reorganize_names_high_gravity_notes(self):
        organize_vault(self.context(self.llm), reorganize=True)
        prompt = self.llm.users("organizing an Obsidian")[0]
        self.assertIn("High-gravity notes (prefer to keep in current MOCs): A", prompt)
        self.assertIn(REORGANIZE_PASS, prompt)

    def test_cluster_restricts_listed_titles(self):
        organize_vault(self.context(self.llm), note_titles=("B", "C"))
        prompt = self.llm.users("organizing an Obsidian")[0]
        self.assertNotIn("- A", prompt)
        self.assertEqual(self.notes.moc_list()[0]["noteTitles"], ["B"])

    def test_moc_is_rewritten_in_place_without_indexing(self):
        organize_vault(self.context(self.llm))
        organize_vault(self.context(self.llm))
        self.assertEqual(self.notes.moc_files(), ["MOCs/Blue things.md"])
        self.assertEqual(self.index.titles(), ["A", "B", "C"])


class LinkTests(StepTestCase):
    def test_rewrite_updates_note_and_index_snippet(self):
        rel = self.add_note("A", "Sky is blue.", "Observation")
        self.add_note("B", "Sky reflects the sea.")
        llm = ScriptedLLM({"adding connections": "```markdown\nSky is blue.\n\nRelationship:: Supports [[B]]\n```"})

        self.assertTrue(link_note(self.context(llm), rel))

        note = self.notes.load(rel)
        self.assertEqual(note.frontmatter, {"type": "Observation"})
        self.assertEqual(note.body, "Sky is blue.\n\nRelationship:: Supports [[B]]")
        self.assertIn("Relationship:: Supports [[B]]", self.index.get("A").text_snippet)
        self.assertIn("- B", llm.users("adding connections")[0])

    def test_unchanged_body_is_not_rewritten(self):
        rel = self.add_note("A", "Sky is blue.")
        self.add_note("B", "Sky reflects the sea.")
        llm = ScriptedLLM({"adding connections": "Sky is blue."})
        self.assertFalse(link_note(self.context(llm), rel))
        self.assertEqual(self.index.get("A").text_snippet, "Sky is blue.")

    def test_missing_note_or_no_candidates_skips_generation(self):
        rel = self.add_note("A", "Alone.")
        llm = ScriptedLLM({})
        self.assertFalse(link_note(self.context(llm), rel))
        self.assertFalse(link_note(self.context(llm), "Insights/Gone.md"))
        self.assertEqual(llm.calls, [])


class DeduceTests(StepTestCase):
    def setUp(self):
        super().setUp()
        self.add_note("P1", "Rain wets streets.\n\nRelationship:: Supports [[Target]]")
        self.add_note("P2", "It rained.\n\nRelationship:: Evidence for [[Target]]\nRelationship:: Contradicts [[Other]]")
        self.target = self.add_note("Target", "Streets are wet.")

    def test_premise_index_keeps_premise_relations_only(self):
        index = premise_index(self.notes.load_notes())
        self.assertEqual(index, {"Target": ["P1", "P2"]})

    def test_conclusion_committed_as_gated_note(self):
        llm = ScriptedLLM({"deductive agent": json.dumps({"conclusion": {
            "title": "Derived",
            "content": "Streets are wet because it rained.\nRelationship:: Conclusion of [[P1]]",
        }})})

        rel = deduce_for_note(self.context(llm), self.target)

        self.assertEqual(rel, "Insights/Derived.md")
        note = self.notes.load(rel)
        self.assertEqual(note.frontmatter, {"type": "Conclusion", "source": "deduce"})
        self.assertIn("Conclusion of [[P1]]", note.body)
        self.assertIn("Derived", self.index.titles())
        prompt = llm.users("deductive agent")[0]
        self.assertIn("## P1\nRain wets streets.", prompt)
        self.assertIn("## P2\nIt rained.", prompt)

    def test_null_conclusion_or_no_premises_writes_nothing(self):
        llm = ScriptedLLM({"deductive agent": '{"conclusion": null}'})
        self.assertIsNone(deduce_for_note(self.context(llm), self.target))
        self.assertIsNone(deduce_for_note(self.context(llm), "Insights/P1.md"))
        self.assertEqual(len(llm.calls), 1)
        self.assertEqual(self.notes.titles(), ["P1", "P2", "Target"])

    def test_existing_title_is_rejected_by_the_gate(self):
        llm = ScriptedLLM({"deductive agent": json.dumps({"conclusion": {"title": "P1", "content": "Again."}})})
        self.assertIsNone(deduce_for_note(self.context(llm), self.target))
        self.assertTrue(any("DEDUP skip 'P1'" in line for line in self.lines))


class InduceTests(StepTestCase):
    def test_themes_committed_through_the_gate(self):
        self.add_note("A", "Sky is blue.")
        self.add_note("B", "Sea is blue.")
        llm = ScriptedLLM({"inductive agent": json.dumps({"themes": [
            {"title": "Blue dominates", "content": "Blue recurs.\nRelationship:: Evidence for [[A]]", "noteTitles": ["A", "B"]},
            {"title": "A", "content": "Duplicate of an existing title."},
            {"title": "No content", "content": "  "},
        ]})})
        payload = InducePayload(moc_path="MOCs/Blue.md", moc_title="Blue", note_titles=("A", "B", "Ghost"),
                                moc_summary="All about blue.")

        created = induce_for_moc(self.context(llm), payload)

        self.assertEqual(created, ["Insights/Blue dominates.md"])
        note = self.notes.load(created[0])
        self.assertEqual(note.frontmatter, {"type": "Theme", "source": "induce"})
        self.assertEqual(self.index.titles(), ["A", "B", "Blue dominates"])
        prompt = llm.users("inductive agent")[0]
        self.assertIn("## A\nSky is blue.", prompt)
        self.assertIn("## Ghost\n(not found)", prompt)
        self.assertIn("All about blue.", prompt)

    def test_empty_moc_skips_generation(self):
        llm = ScriptedLLM({})
        self.assertEqual(induce_for_moc(self.context(llm), InducePayload("MOCs/E.md", "E")), [])
        self.assertEqual(llm.calls, [])


class ValidateTests(StepTestCase):
    def setUp(self):
        super().setUp()
        self.add_note("A", "Up.\nRelationship:: Contradicts [[B]]\nRelationship:: Supports [[Backed]]")
        self.add_note("B", "Down.\nRelationship:: Contradicts [[A]]")
        self.add_note("Backed", "Supported claim.", "Conclusion")
        self.add_note("Derived", "Unsupported claim.", "Conclusion")
        self.llm = ScriptedLLM({
            "document logical conflicts": "```markdown\nA says up, B says down.\nRelationship:: Contradicts [[A]]\n```",
        })

    def test_finders(self):
        notes = self.notes.load_notes()
        self.assertEqual(find_contradictions(notes), [
            {"fromTitle": "A", "toTitle": "B"},
            {"fromTitle": "B", "toTitle": "A"},
        ])
        self.assertEqual(find_orphans(notes), ["Derived"])

    def test_one_synthesis_note_per_pair_and_report_saved(self):
        report = run_validation(self.context(self.llm))

        conflict = ".vaultmaker/Conflicts/Conflict-A-vs-B.md"
        self.assertEqual(len(self.llm.users("document logical conflicts")), 1)
        self.assertEqual(report["synthesisNotesCreated"], [conflict])
        self.assertEqual(report["orphans"], ["Derived"])
        self.assertEqual(len(report["conflicts"]), 2)

        note = self.notes.load(conflict)
        self.assertEqual(note.frontmatter, {"type": "Conflict", "source": "validate"})
        self.assertEqual(note.body, "A says up, B says down.\nRelationship:: Contradicts [[A]]")
        self.assertNotIn(conflict, self.notes.list_markdown_files())

        saved = json.loads((self.storage.state_dir / "validation.json").read_text(encoding="utf-8"))
        self.assertEqual(saved["orphans"], ["Derived"])
        self.assertEqual(saved["synthesisNotesCreated"], [conflict])

    def test_synthesis_notes_are_not_link_candidates(self):
        run_validation(self.context(self.llm))
        self.assertIsNotNone(self.index.get("Conflict-A-vs-B"))
        self.assertNotIn("Conflict-A-vs-B", self.index.relevant_titles("A says up B says down conflict", 10))

    def test_rerun_does_not_duplicate_synthesis(self):
        run_validation(self.context(self.llm))
        report = run_validation(self.context(self.llm))
        self.assertEqual(report["synthesisNotesCreated"], [])
        self.assertTrue(any("title exists" in line for line in self.lines))


if __name__ == "__main__":
    unittest_main()
