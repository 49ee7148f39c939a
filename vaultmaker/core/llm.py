"""Generation and embedding backends, plus helpers for parsing their JSON output."""

from __future__ import annotations

import json
import re
from typing import Protocol

from vaultmaker.config import Settings, get_api_key
from vaultmaker.core.errors import EmbeddingError, GenerationError
from vaultmaker.core.logfile import log


class GenerationClient(Protocol):
    def complete(self, messages: list[dict], max_tokens: int = 4096) -> str: ...


class EmbeddingClient(Protocol):
    def embed(self, text: str) -> list[float]: ...


# ─── OpenAI-compatible chat completion ──────────────────────────────────────


class OpenAIGenerationClient:
    def __init__(self, api_key: str, model: str, base_url: str | None = None,
                 timeout: float = 120.0, max_retries: int = 0):
        from openai import OpenAI

        self.model = model
        self._client = OpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=max_retries)

    def complete(self, messages: list[dict], max_tokens: int = 4096) -> str:
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                max_tokens=max_tokens,
                messages=messages,
            )
        except Exception as exc:
            raise GenerationError(f"generation request failed: {exc}") from exc
        content = response.choices[0].message.content if response.choices else None
        if content is None or not content.strip():
            raise GenerationError("empty generation response")
        return content


# ─── Embeddings ─────────────────────────────────────────────────────────────


def _check_vector(vec) -> list[float]:
    if not isinstance(vec, list) or not vec:
        raise EmbeddingError("empty embedding response")
    return [float(x) for x in vec]


class VoyageEmbeddingClient:
    def __init__(self, api_key: str, model: str):
        import voyageai

        self.model = model
        self._client = voyageai.Client(api_key=api_key)

    def embed(self, text: str) -> list[float]:
        try:
            result = self._client.embed([text], model=self.model, input_type="document", truncation=True)
        except Exception as exc:
            raise EmbeddingError(f"voyage embed failed: {exc}") from exc
        embeddings = getattr(result, "embeddings", None) or []
        return _check_vector(embeddings[0] if embeddings else None)


class OpenAIEmbeddingClient:
    def __init__(self, api_key: str, model: str, base_url: str | None = None, timeout: float = 60.0):
        from openai import OpenAI

        self.model = model
        self._client = OpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)

    def embed(self, text: str) -> list[float]:
        try:
            response = self._client.embeddings.create(model=self.model, input=text[:8000])
        except Exception as exc:
            raise EmbeddingError(f"openai embed failed: {exc}") from exc
        data = response.data or []
        return _check_vector(data[0].embedding if data else None)


def build_generation_client(settings: Settings) -> GenerationClient | None:
    """OpenAI-compatible client, or None when OPENAI_API_KEY is missing."""
    api_key = get_api_key(settings, "OPENAI_API_KEY")
    if not api_key:
        return None
    return OpenAIGenerationClient(
        api_key,
        settings.generation_model,
        base_url=settings.generation_base_url,
        timeout=settings.generation_timeout_seconds,
        max_retries=settings.generation_max_retries,
    )


def build_embedding_client(settings: Settings) -> EmbeddingClient | None:
    if settings.embed_provider == "voyage":
        api_key = get_api_key(settings, "VOYAGE_API_KEY")
        if api_key:
            return VoyageEmbeddingClient(api_key, settings.voyage_embed_model)
        log("EMBED SKIP: VOYAGE_API_KEY missing, keyword retrieval only")
        return None
    if settings.embed_provider == "openai":
        api_key = get_api_key(settings, "OPENAI_API_KEY")
        if api_key:
            return OpenAIEmbeddingClient(api_key, settings.openai_embed_model, base_url=settings.generation_base_url)
        return None
    return None


# ─── Output parsing ─────────────────────────────────────────────────────────

_WRAPPING_FENCE_RE = re.compile(r"\A```[\w-]*[ \t]*\n(.*?)\n?```\Z", re.DOTALL)
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def strip_markdown_fences(text: str) -> str:
    """Unwrap a reply that is a single fenced block; anything else comes back as is."""
    text = text.strip()
    match = _WRAPPING_FENCE_RE.match(text)
    if match is None or "```" in match.group(1):
        return text
    return match.group(1).strip()


def _repair_json_newlines(raw: str) -> str:
    """Fix literal newlines inside JSON strings (common LLM output issue)."""
    result = []
    in_string = False
    escaped = False
    for char in raw:
        if escaped:
            result.append(char)
            escaped = False
        elif char == "\\" and in_string:
            result.append(char)
            escaped = True
        elif char == '"':
            result.append(char)
            in_string = not in_string
        elif char == "\n" and in_string:
            result.append("\\n")
        elif char == "\r" and in_string:
            result.append("\\r")
        elif char == "\t" and in_string:
            result.append("\\t")
        else:
            result.append(char)
    return "".join(result)


def parse_json_object(raw: str) -> dict | None:
    """Outermost JSON object in a generation response, or None if there is none."""
    match = _OBJECT_RE.search(strip_markdown_fences(raw))
    if not match:
        return None
    try:
        parsed = json.loads(_repair_json_newlines(match.group(0)))
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None
