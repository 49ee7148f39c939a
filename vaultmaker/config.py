from __future__ import annotations

import importlib.util
import os
import types
from dataclasses import dataclass, fields
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]


@dataclass(frozen=True)
class Settings:
    repo_root: Path
    state_dir: Path
    env_file: Path
    log_file: Path
    vault_config_path: Path

    vault_path: Path | None
    vault_name: str | None
    source_dir: Path | None

    generation_model: str
    generation_base_url: str | None
    generation_timeout_seconds: float
    generation_max_retries: int
    embed_provider: str
    voyage_embed_model: str
    openai_embed_model: str

    watch_poll_interval: float
    log_ring_size: int
    target_cluster_size: int
    max_clusters: int
    config_file_loaded: bool


@dataclass(frozen=True)
class AgentConfig:
    """Per-vault knobs stored in `.vaultmaker/agentConfig.json`."""

    max_titles_extract: int = 80
    max_titles_link: int = 50
    max_titles_organize: int = 400
    dedup_similarity_threshold: float = 0.92
    use_embeddings: bool = True

    _JSON_KEYS = {
        "max_titles_extract": "maxTitlesExtract",
        "max_titles_link": "maxTitlesLink",
        "max_titles_organize": "maxTitlesOrganize",
        "dedup_similarity_threshold": "dedupSimilarityThreshold",
        "use_embeddings": "useEmbeddings",
    }

    @classmethod
    def from_dict(cls, data: dict | None) -> "AgentConfig":
        defaults = cls()
        if not isinstance(data, dict):
            return defaults
        values = {}
        for f in fields(cls):
            raw = data.get(cls._JSON_KEYS[f.name])
            default = getattr(defaults, f.name)
            if isinstance(default, bool):
                values[f.name] = raw if isinstance(raw, bool) else default
            elif isinstance(raw, (int, float)) and not isinstance(raw, bool):
                values[f.name] = type(default)(raw)
            else:
                values[f.name] = default
        return cls(**values)

    def to_dict(self) -> dict:
        return {json_key: getattr(self, name) for name, json_key in self._JSON_KEYS.items()}

    def merged(self, updates: dict) -> "AgentConfig":
        data = self.to_dict()
        data.update({k: v for k, v in updates.items() if v is not None})
        return AgentConfig.from_dict(data)


def _parse_int(value: str) -> int:
    return int(value.strip())


def _parse_float(value: str) -> float:
    return float(value.strip())


DEFAULTS: dict[str, object] = {
    "STATE_DIR": str(Path.home() / ".vaultmaker"),
    "ENV_FILE": str(REPO_ROOT / ".env"),
    "LOG_FILE": None,
    "VAULT_PATH": None,
    "VAULT_NAME": None,
    "SOURCE_DIR": None,
    "GENERATION_MODEL": "gpt-4o-mini",
    "GENERATION_BASE_URL": None,
    "GENERATION_TIMEOUT_SECONDS": 120.0,
    "GENERATION_MAX_RETRIES": 0,
    "EMBED_PROVIDER": "voyage",
    "VOYAGE_EMBED_MODEL": "voyage-3-lite",
    "OPENAI_EMBED_MODEL": "text-embedding-3-small",
    "WATCH_POLL_INTERVAL": 5.0,
    "LOG_RING_SIZE": 100,
    "TARGET_CLUSTER_SIZE": 40,
    "MAX_CLUSTERS": 12,
}

ENV_CASTS: dict[str, object] = {
    "GENERATION_TIMEOUT_SECONDS": _parse_float,
    "GENERATION_MAX_RETRIES": _parse_int,
    "WATCH_POLL_INTERVAL": _parse_float,
    "LOG_RING_SIZE": _parse_int,
    "TARGET_CLUSTER_SIZE": _parse_int,
    "MAX_CLUSTERS": _parse_int,
}


def _load_config_file(config_path: Path) -> types.ModuleType | None:
    if not config_path.exists():
        return None
    spec = importlib.util.spec_from_file_location("vaultmaker_user_config", config_path)
    if spec is None or spec.loader is None:
        return None
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _env_get(key: str) -> str | None:
    # Bare names first, then the VAULTMAKER_* alias.
    for name in (key, f"VAULTMAKER_{key}"):
        value = os.environ.get(name)
        if value is not None and value != "":
            return value
    return None


def resolve_config_values(repo_root: Path | str = REPO_ROOT) -> tuple[dict[str, object], bool]:
    """Merge defaults, the optional config file, and environment overrides."""
    repo_root = Path(repo_root)
    values = dict(DEFAULTS)

    config_path = Path(os.environ.get("VAULTMAKER_CONFIG", repo_root / "config.py"))
    file_module = _load_config_file(config_path)
    if file_module is not None:
        for key in values:
            if hasattr(file_module, key):
                values[key] = getattr(file_module, key)

    for key in values:
        raw_value = _env_get(key)
        if raw_value is None:
            continue
        caster = ENV_CASTS.get(key)
        if caster is None:
            values[key] = raw_value
            continue
        try:
            values[key] = caster(raw_value)  # type: ignore[operator]
        except ValueError:
            # Keep the previously resolved value if env is malformed.
            pass
    return values, file_module is not None


def _optional_path(value) -> Path | None:
    if value is None or value == "":
        return None
    return Path(str(value)).expanduser()


def load_settings(repo_root: Path | str = REPO_ROOT) -> Settings:
    values, loaded = resolve_config_values(repo_root)

    state_dir = Path(str(values["STATE_DIR"])).expanduser()
    log_file = _optional_path(values["LOG_FILE"]) or state_dir / "vaultmaker.log"
    embed_provider = str(values["EMBED_PROVIDER"]).strip().lower()
    if embed_provider not in {"voyage", "openai", "none"}:
        embed_provider = "voyage"

    return Settings(
        repo_root=Path(repo_root),
        state_dir=state_dir,
        env_file=Path(str(values["ENV_FILE"])).expanduser(),
        log_file=log_file,
        vault_config_path=state_dir / "vaultConfig.json",
        vault_path=_optional_path(values["VAULT_PATH"]),
        vault_name=values["VAULT_NAME"] or None,  # type: ignore[arg-type]
        source_dir=_optional_path(values["SOURCE_DIR"]),
        generation_model=str(values["GENERATION_MODEL"]),
        generation_base_url=values["GENERATION_BASE_URL"] or None,  # type: ignore[arg-type]
        generation_timeout_seconds=max(1.0, float(values["GENERATION_TIMEOUT_SECONDS"])),  # type: ignore[arg-type]
        generation_max_retries=max(0, int(values["GENERATION_MAX_RETRIES"])),  # type: ignore[arg-type]
        embed_provider=embed_provider,
        voyage_embed_model=str(values["VOYAGE_EMBED_MODEL"]),
        openai_embed_model=str(values["OPENAI_EMBED_MODEL"]),
        watch_poll_interval=max(0.5, float(values["WATCH_POLL_INTERVAL"])),  # type: ignore[arg-type]
        log_ring_size=max(10, int(values["LOG_RING_SIZE"])),  # type: ignore[arg-type]
        target_cluster_size=max(2, int(values["TARGET_CLUSTER_SIZE"])),  # type: ignore[arg-type]
        max_clusters=max(1, int(values["MAX_CLUSTERS"])),  # type: ignore[arg-type]
        config_file_loaded=loaded,
    )


def load_env_file(env_file: Path) -> dict:
    env = {}
    try:
        text = env_file.read_text()
    except OSError:
        return env
    for line in text.splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            k, v = line.split("=", 1)
            env[k.strip()] = v.strip().strip('"').strip("'")
    return env


def get_api_key(settings: Settings, name: str) -> str:
    """Look up an API key in the .env file, then the process environment."""
    env = load_env_file(settings.env_file)
    key = env.get(name) or os.environ.get(name, "")
    if not key or key.startswith("<"):
        return ""
    return key
