"""Semantic file index: LiteLLM embeddings stored in sqlite, cosine search via sqlite-vec.

The context builder depends only on the ``SemanticIndex`` protocol; this
module provides the sqlite-backed implementation and the indexer that keeps it
populated for each committed version.

What is embedded per file:  f"File: {path} ({language})\\n\\n{content[:8000]}"
Identical content (same project, path, hash, model) reuses the stored vector.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
from dataclasses import dataclass, field
from typing import Protocol

from iterforge.db.models import FileEmbedding
from iterforge.db.repository import Repository
from iterforge.rag.dependencies import extract_imports
from iterforge.rag.llm_client import aembed
from iterforge.rag.models import SearchHit

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "openai/text-embedding-3-small"
MAX_EMBED_CHARS = 8_000

SOURCE_FILE_TYPES: tuple[str, ...] = ("component", "utility", "api", "config")

_SKIP_EXTENSIONS: tuple[str, ...] = (
    ".png", ".jpg", ".jpeg", ".gif", ".svg", ".ico", ".webp",
    ".mp4", ".mov", ".avi", ".webm",
    ".woff", ".woff2", ".ttf", ".eot",
    ".zip", ".tar", ".gz",
    ".map", ".min.js", ".bundle.js",
)
_SKIP_FILES: tuple[str, ...] = ("package-lock.json", "pnpm-lock.yaml", "yarn.lock")
_SKIP_DIRS: tuple[str, ...] = ("node_modules", ".git")

# (file_type, path regex) checked in order; content rule for components below.
_FILE_TYPE_RULES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("config", re.compile(r"package\.json|tsconfig|\.config\.")),
    ("test", re.compile(r"\.test\.|\.spec\.|__tests__|__mocks__")),
    ("types", re.compile(r"\.d\.ts$|types/")),
    ("component", re.compile(r"component|widget|view")),
    ("utility", re.compile(r"util|helper|lib")),
    ("api", re.compile(r"api|route|endpoint|controller")),
)

_LANGUAGES: dict[str, str] = {
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".py": "python",
    ".css": "css",
    ".json": "json",
    ".md": "markdown",
    ".html": "html",
}


class SemanticIndex(Protocol):
    async def search(
        self,
        project_id: str,
        query: str,
        *,
        version_id: str | None = None,
        limit: int = 15,
        threshold: float = 0.3,
        file_types: list[str] | None = None,
    ) -> list[SearchHit]: ...


# ------------------------------------------------------------------
# File classification helpers
# ------------------------------------------------------------------


def should_embed_file(path: str) -> bool:
    """False for binaries, assets, lockfiles, and vendored directories."""
    lower = path.lower()
    if lower.endswith(_SKIP_EXTENSIONS):
        return False
    if any(name in lower for name in _SKIP_FILES):
        return False
    segments = lower.split("/")
    return not any(d in segments for d in _SKIP_DIRS)


def detect_file_type(path: str, content: str) -> str:
    lower = path.lower()
    for file_type, pattern in _FILE_TYPE_RULES:
        if file_type == "component" and "export default function" in content:
            return "component"
        if pattern.search(lower):
            return file_type
    return "other"


def detect_language(path: str) -> str:
    lower = path.lower()
    for ext, language in _LANGUAGES.items():
        if lower.endswith(ext):
            return language
    return ""


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def embedding_text(path: str, content: str, language: str = "") -> str:
    header = f"File: {path}" + (f" ({language})" if language else "") + "\n\n"
    if len(content) > MAX_EMBED_CHARS:
        content = content[:MAX_EMBED_CHARS] + "\n\n[... truncated ...]"
    return header + content


# ------------------------------------------------------------------
# Search
# ------------------------------------------------------------------


class SqliteSemanticIndex:
    """Cosine search over one version's stored file embeddings."""

    def __init__(self, repo: Repository, embedding_model: str = DEFAULT_EMBEDDING_MODEL) -> None:
        self._repo = repo
        self.embedding_model = embedding_model

    async def search(
        self,
        project_id: str,
        query: str,
        *,
        version_id: str | None = None,
        limit: int = 15,
        threshold: float = 0.3,
        file_types: list[str] | None = None,
    ) -> list[SearchHit]:
        """Return hits with similarity >= *threshold*, best-first.

        A project without a committed version has nothing to search.
        """
        if version_id is None:
            return []
        query_embedding = await aembed(self.embedding_model, query)
        rows = self._repo.search_file_embeddings(
            project_id,
            version_id,
            query_embedding,
            self.embedding_model,
            limit=limit,
            file_types=file_types,
        )
        return [
            SearchHit(file_path=path, similarity=similarity, file_type=file_type, imports=imports)
            for path, similarity, file_type, imports in rows
            if similarity >= threshold
        ]


# ------------------------------------------------------------------
# Indexing
# ------------------------------------------------------------------


@dataclass
class IndexReport:
    indexed: int = 0
    reused: int = 0
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


class FileIndexer:
    """Embed a version's files and store them for semantic search.

    Per-file embedding errors are recorded in the report and never abort the
    rest of the batch.
    """

    def __init__(
        self,
        repo: Repository,
        embedding_model: str = DEFAULT_EMBEDDING_MODEL,
        *,
        concurrency: int = 8,
    ) -> None:
        self._repo = repo
        self.embedding_model = embedding_model
        self._semaphore = asyncio.Semaphore(max(1, concurrency))

    async def index_version(
        self, project_id: str, version_id: str, files: dict[str, str]
    ) -> IndexReport:
        report = IndexReport()
        targets = []
        for path, content in files.items():
            if should_embed_file(path):
                targets.append((path, content))
            else:
                report.skipped.append(path)

        records = await asyncio.gather(
            *(self._prepare(project_id, version_id, path, content, report) for path, content in targets)
        )
        for record in records:
            if record is not None:
                self._repo.add_file_embedding(record)

        logger.info(
            "Indexed version %s: %d embedded, %d reused, %d skipped, %d failed",
            version_id,
            report.indexed,
            report.reused,
            len(report.skipped),
            len(report.failed),
        )
        return report

    async def _prepare(
        self,
        project_id: str,
        version_id: str,
        path: str,
        content: str,
        report: IndexReport,
    ) -> FileEmbedding | None:
        digest = content_hash(content)
        language = detect_language(path)
        embedding = self._repo.find_embedding(project_id, path, digest, self.embedding_model)
        if embedding is not None:
            report.reused += 1
        else:
            try:
                async with self._semaphore:
                    embedding = await aembed(
                        self.embedding_model, embedding_text(path, content, language)
                    )
            except Exception as exc:
                logger.warning("Failed to embed %s: %s", path, exc)
                report.failed[path] = str(exc)
                return None
            report.indexed += 1

        return FileEmbedding(
            project_id=project_id,
            version_id=version_id,
            file_path=path,
            content_hash=digest,
            embedding_model=self.embedding_model,
            embedding=embedding,
            file_type=detect_file_type(path, content),
            language=language,
            imports=extract_imports(content),
        )
