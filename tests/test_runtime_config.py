#!/usr/bin/env python3
"""Layered configuration tests: defaults, config file, environment overrides."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from unittest import TestCase, main as unittest_main

from vaultmaker.config import AgentConfig, get_api_key, load_settings, resolve_config_values
from vaultmaker.core.storage import JsonVaultStorage, load_vault_selection, save_vault_selection

_TOUCHED_KEYS = (
    "VAULTMAKER_CONFIG", "VAULT_PATH", "VAULTMAKER_VAULT_PATH", "GENERATION_MODEL",
    "WATCH_POLL_INTERVAL", "MAX_CLUSTERS", "EMBED_PROVIDER", "STATE_DIR", "ENV_FILE",
    "LOG_FILE", "OPENAI_API_KEY",
)


class RuntimeConfigTests(TestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.repo_root = Path(self.temp_dir.name)
        self.config_file = self.repo_root / "config.py"
        self._saved_env = {}
        for key in _TOUCHED_KEYS:
            self._set_env(key, None)

    def tearDown(self):
        for key, value in self._saved_env.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value
        self.temp_dir.cleanup()

    def _set_env(self, key: str, value: str | None) -> None:
        if key not in self._saved_env:
            self._saved_env[key] = os.environ.get(key)
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value

    def test_env_priority_over_file(self):
        self.config_file.write_text(
            "\n".join(
                [
                    'VAULT_PATH = "/file/vault"',
                    'GENERATION_MODEL = "file-model"',
                    "MAX_CLUSTERS = 9",
                ]
            )
            + "\n",
            encoding="utf-8",
        )
        self._set_env("VAULTMAKER_CONFIG", str(self.config_file))
        self._set_env("VAULT_PATH", "/env/vault")
        self._set_env("MAX_CLUSTERS", "5")

        values, loaded = resolve_config_values(self.repo_root)
        self.assertTrue(loaded)
        self.assertEqual(values["VAULT_PATH"], "/env/vault")
        self.assertEqual(values["GENERATION_MODEL"], "file-model")
        self.assertEqual(values["MAX_CLUSTERS"], 5)

    def test_prefixed_env_alias(self):
        self._set_env("VAULTMAKER_CONFIG", str(self.repo_root / "missing.py"))
        self._set_env("VAULTMAKER_VAULT_PATH", "/alias/vault")
        values, loaded = resolve_config_values(self.repo_root)
        self.assertFalse(loaded)
        self.assertEqual(values["VAULT_PATH"], "/alias/vault")

    def test_malformed_env_keeps_file_value(self):
        self.config_file.write_text("WATCH_POLL_INTERVAL = 12.5\n", encoding="utf-8")
        self._set_env("VAULTMAKER_CONFIG", str(self.config_file))
        self._set_env("WATCH_POLL_INTERVAL", "soon")
        values, _ = resolve_config_values(self.repo_root)
        self.assertEqual(values["WATCH_POLL_INTERVAL"], 12.5)

    def test_fallback_defaults_without_file(self):
        self._set_env("VAULTMAKER_CONFIG", str(self.repo_root / "missing.py"))
        self._set_env("STATE_DIR", str(self.repo_root / "state"))
        self._set_env("EMBED_PROVIDER", "Something-Else")

        settings = load_settings(self.repo_root)
        self.assertIsNone(settings.vault_path)
        self.assertEqual(settings.log_file, self.repo_root / "state" / "vaultmaker.log")
        self.assertEqual(settings.vault_config_path, self.repo_root / "state" / "vaultConfig.json")
        self.assertEqual(settings.embed_provider, "voyage")
        self.assertEqual(settings.generation_max_retries, 0)
        self.assertFalse(settings.config_file_loaded)

    def test_api_key_from_env_file_then_environment(self):
        env_file = self.repo_root / ".env"
        env_file.write_text('# keys\nOPENAI_API_KEY="sk-file"\nVOYAGE_API_KEY=<your-key>\n', encoding="utf-8")
        self._set_env("VAULTMAKER_CONFIG", str(self.repo_root / "missing.py"))
        self._set_env("ENV_FILE", str(env_file))
        settings = load_settings(self.repo_root)
        self.assertEqual(get_api_key(settings, "OPENAI_API_KEY"), "sk-file")
        self.assertEqual(get_api_key(settings, "VOYAGE_API_KEY"), "")

        env_file.write_text("", encoding="utf-8")
        self._set_env("OPENAI_API_KEY", "sk-env")
        self.assertEqual(get_api_key(settings, "OPENAI_API_KEY"), "sk-env")


class AgentConfigTests(TestCase):
    def test_defaults_and_partial_document(self):
        self.assertEqual(AgentConfig.from_dict(None), AgentConfig())
        config = AgentConfig.from_dict({"maxTitlesLink": 7, "useEmbeddings": "no", "dedupSimilarityThreshold": 1})
        self.assertEqual(config.max_titles_link, 7)
        self.assertTrue(config.use_embeddings)
        self.assertEqual(config.dedup_similarity_threshold, 1.0)
        self.assertEqual(config.max_titles_organize, 400)

    def test_save_merges_updates(self):
        with tempfile.TemporaryDirectory() as tmp:
            storage = JsonVaultStorage(tmp)
            storage.save_agent_config({"maxTitlesExtract": 10})
            saved = storage.save_agent_config({"useEmbeddings": False})
            self.assertEqual(saved.max_titles_extract, 10)
            self.assertFalse(saved.use_embeddings)
            self.assertEqual(storage.load_agent_config(), saved)

    def test_vault_selection_round_trip(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "vaultConfig.json"
            self.assertEqual(load_vault_selection(path), {"vaultPath": None, "vaultName": None, "sourceDir": None})
            save_vault_selection(path, vaultPath="/v", vaultName="V")
            saved = save_vault_selection(path, sourceDir="/s", bogus="x")
            self.assertEqual(saved, {"vaultPath": "/v", "vaultName": "V", "sourceDir": "/s"})


if __name__ == "__main__":
    unittest_main()
