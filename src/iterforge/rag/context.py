"""Context builder: select a budget-bounded slice of the project for one request.

Pipeline (candidate sets are additive; later steps skip selected paths):
  1. Conversation history, oldest → newest.
  2. Previous snapshot from the latest complete version.
  3. Keyword path match (relevance 0.95).
  4. Semantic search through the SemanticIndex (relevance = similarity).
  5. Literal content search, only when 3 and 4 found nothing (relevance 0.90).
  6. Import resolution into dependency files.
  7. Config files, independent of relevance.
  8. Character budget per pool.
  9. Summary and stats.

History and semantic search failures degrade to an empty contribution.
"""

from __future__ import annotations

import logging
import time

from iterforge.rag.budget import (
    BudgetAllocation,
    message_size,
    pool_size,
    truncate_files,
    truncate_history,
    truncate_relevant_files,
)
from iterforge.rag.conversation import ConversationStore
from iterforge.rag.dependencies import extract_imports, resolve_dependencies
from iterforge.rag.index import SOURCE_FILE_TYPES, SemanticIndex
from iterforge.rag.keywords import find_files_by_keywords, search_files_by_content
from iterforge.rag.llm_client import estimate_tokens
from iterforge.rag.models import (
    ContextOptions,
    ContextStats,
    RelevantFile,
    RetrievalContext,
    SearchHit,
)
from iterforge.versions.store import VersionStore

logger = logging.getLogger(__name__)

KEYWORD_RELEVANCE = 0.95
CONTENT_RELEVANCE = 0.90
DEFAULT_SIMILARITY_THRESHOLD = 0.3
PROMPT_HISTORY_TURNS = 5

CONFIG_FILE_PATTERNS: tuple[str, ...] = (
    "package.json",
    "tsconfig.json",
    "next.config",
    "vite.config",
    "tailwind.config",
    ".env",
    "README.md",
)


def extract_config_files(files: dict[str, str]) -> dict[str, str]:
    return {
        path: content
        for path, content in files.items()
        if any(pattern in path for pattern in CONFIG_FILE_PATTERNS)
    }


def relevance_reason(similarity: float, file_type: str) -> str:
    percent = round(similarity * 100)
    if similarity > 0.8:
        return f"Highly relevant {file_type} ({percent}% match)"
    if similarity > 0.6:
        return f"Relevant {file_type} ({percent}% match)"
    return f"Related {file_type} ({percent}% match)"


def describe_channels(keyword: int, semantic: int, content: int) -> str:
    """Name the retrieval channels that selected at least one file."""
    channels = [
        f"{label} ({count})"
        for label, count in (
            ("keyword match", keyword),
            ("semantic search", semantic),
            ("content search", content),
        )
        if count
    ]
    return ", ".join(channels) or "no matching channel"


class ContextBuilder:
    """Build a RetrievalContext from the version store, conversation and index.

    ``index`` may be None; retrieval then relies on the keyword and content
    channels alone.
    """

    def __init__(
        self,
        versions: VersionStore,
        conversations: ConversationStore,
        index: SemanticIndex | None = None,
        *,
        allocation: BudgetAllocation | None = None,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ) -> None:
        self._versions = versions
        self._conversations = conversations
        self._index = index
        self.allocation = allocation or BudgetAllocation()
        self.similarity_threshold = similarity_threshold

    async def build_context(
        self,
        project_id: str,
        prompt: str,
        options: ContextOptions | None = None,
    ) -> RetrievalContext:
        options = options or ContextOptions()
        context = RetrievalContext(project_id=project_id)

        # 1. Conversation
        try:
            history = await self._conversations.fetch_recent_messages(
                project_id, options.message_limit
            )
        except Exception as exc:
            logger.warning("Conversation history unavailable for %s: %s", project_id, exc)
            context.warnings.append(f"Conversation history unavailable: {exc}")
            history = []

        # 2. Previous snapshot
        previous = await self._versions.get_latest_version(project_id)
        previous_files = dict(previous.files) if previous else {}
        context.previous_version = previous
        context.previous_files = previous_files

        relevant: dict[str, RelevantFile] = {}
        imports_by_path: dict[str, list[str]] = {}

        # 3. Keyword path match
        for path in find_files_by_keywords(prompt, previous_files):
            relevant[path] = RelevantFile(
                content=previous_files[path],
                relevance=KEYWORD_RELEVANCE,
                reason="Keyword match from prompt",
            )
        keyword_count = len(relevant)

        # 4. Semantic search
        hits: list[SearchHit] = []
        started = time.perf_counter()
        if self._index is not None and previous is not None:
            try:
                hits = await self._index.search(
                    project_id,
                    prompt,
                    version_id=previous.id,
                    limit=options.max_files,
                    threshold=self.similarity_threshold,
                    file_types=None if options.include_tests else list(SOURCE_FILE_TYPES),
                )
            except Exception as exc:
                logger.warning("Semantic search failed for %s: %s", project_id, exc)
                context.warnings.append(f"Semantic search unavailable: {exc}")
                hits = []
        search_ms = (time.perf_counter() - started) * 1000

        semantic_count = 0
        for hit in hits:
            if hit.file_path in relevant or hit.file_path not in previous_files:
                continue
            relevant[hit.file_path] = RelevantFile(
                content=previous_files[hit.file_path],
                relevance=hit.similarity,
                reason=relevance_reason(hit.similarity, hit.file_type),
            )
            imports_by_path[hit.file_path] = list(hit.imports)
            semantic_count += 1

        # 5. Content fallback
        content_count = 0
        if keyword_count == 0 and semantic_count == 0:
            for path in search_files_by_content(prompt, previous_files, limit=options.max_files):
                if path in relevant:
                    continue
                relevant[path] = RelevantFile(
                    content=previous_files[path],
                    relevance=CONTENT_RELEVANCE,
                    reason="Content match for search terms",
                )
                content_count += 1
            if relevant:
                logger.info("Content search found %d file(s) for %s", len(relevant), project_id)

        # 6. Dependencies
        selected = {
            path: imports_by_path.get(path) or extract_imports(data.content)
            for path, data in relevant.items()
        }
        dependencies = resolve_dependencies(selected, previous_files, exclude=set(relevant))

        # 7. Config
        config_files = extract_config_files(previous_files)

        # 8. Budget
        budget = self.allocation
        context.conversation = truncate_history(history, budget.conversation)
        context.config_files = truncate_files(config_files, budget.config)
        context.relevant_files = truncate_relevant_files(relevant, budget.relevant)
        context.dependency_files = truncate_files(dependencies, budget.dependencies)

        # 9. Summary and stats
        estimated_chars = (
            sum(message_size(m) for m in context.conversation)
            + pool_size(context.config_files)
            + pool_size(context.relevant_files)
            + pool_size(context.dependency_files)
        )
        context.stats = ContextStats(
            project_files=len(previous_files),
            total_files=(
                len(context.relevant_files)
                + len(context.dependency_files)
                + len(context.config_files)
            ),
            selected_files=len(context.relevant_files),
            estimated_chars=estimated_chars,
            estimated_tokens=estimate_tokens(estimated_chars),
            search_ms=search_ms,
        )
        context.summary = (
            f"Selected {context.stats.selected_files}/{context.stats.project_files} files "
            f"via {describe_channels(keyword_count, semantic_count, content_count)}. "
            f"Conversation: {len(context.conversation)} messages."
        )
        logger.info(
            "Context for %s: %d relevant, %d dependencies, %d config, ~%d tokens",
            project_id,
            len(context.relevant_files),
            len(context.dependency_files),
            len(context.config_files),
            context.stats.estimated_tokens,
        )
        return context


def format_for_prompt(context: RetrievalContext, prompt: str) -> str:
    """Render the context as the user message for generation."""
    sections: list[str] = [f"# Context Summary\n{context.summary}\n"]

    if context.conversation:
        sections.append("## Recent Conversation\n")
        for message in context.conversation[-PROMPT_HISTORY_TURNS:]:
            sections.append(f"**{message['role']}**: {message['content']}\n")

    if context.config_files:
        sections.append("\n## Configuration Files\n")
        for path, content in context.config_files.items():
            sections.append(f"### {path}\n```\n{content}\n```\n")

    if context.relevant_files:
        sections.append("\n## Relevant Files\n")
        ranked = sorted(
            context.relevant_files.items(), key=lambda item: item[1].relevance, reverse=True
        )
        for path, data in ranked:
            sections.append(f"### {path}\n*{data.reason}*\n```\n{data.content}\n```\n")

    if context.dependency_files:
        sections.append("\n## Related Dependencies\n")
        for path, content in context.dependency_files.items():
            sections.append(f"### {path}\n```\n{content}\n```\n")

    sections.append("\n## New Request\n")
    sections.append(prompt)
    return "\n".join(sections)
