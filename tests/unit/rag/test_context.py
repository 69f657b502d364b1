"""Tests for the context builder."""

from __future__ import annotations

import asyncio

import pytest

from fakes import FakeConversationStore, FakeSemanticIndex
from iterforge.db.models import VersionStatus
from iterforge.rag.budget import TRUNCATION_MARKER, BudgetAllocation, pool_size
from iterforge.rag.context import (
    CONTENT_RELEVANCE,
    KEYWORD_RELEVANCE,
    ContextBuilder,
    extract_config_files,
    format_for_prompt,
    relevance_reason,
)
from iterforge.rag.models import ContextOptions, SearchHit

FILES = {
    "package.json": '{"name": "shop"}',
    "README.md": "# Shop",
    "src/components/Header.tsx": "import { Logo } from './Logo'\nexport default function Header() {}",
    "src/components/Logo.tsx": "export const Logo = () => 'ACME STORE'",
    "src/lib/cart.ts": "import { money } from './money'\nexport const total = 0",
    "src/lib/money.ts": "export const money = (n) => n",
}


def _seed(store, project, files=FILES):
    return asyncio.run(
        store.create_version(project.id, 1, "import", files, status=VersionStatus.COMPLETE)
    )


def _build(builder, project, prompt, options=None):
    return asyncio.run(builder.build_context(project.id, prompt, options))


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def test_extract_config_files():
    assert set(extract_config_files(FILES)) == {"package.json", "README.md"}


@pytest.mark.parametrize(
    "similarity,prefix",
    [(0.91, "Highly relevant"), (0.7, "Relevant"), (0.45, "Related")],
)
def test_relevance_reason_bands(similarity, prefix):
    reason = relevance_reason(similarity, "component")
    assert reason.startswith(f"{prefix} component")
    assert f"({round(similarity * 100)}% match)" in reason


# ------------------------------------------------------------------
# Channels
# ------------------------------------------------------------------


def test_fresh_project_has_empty_context(store, project):
    index = FakeSemanticIndex()
    context = _build(ContextBuilder(store, FakeConversationStore(), index), project, "add a header")
    assert context.is_fresh_project
    assert context.relevant_files == {}
    assert context.previous_files == {}
    assert index.calls == []


def test_keyword_channel(store, project):
    _seed(store, project)
    context = _build(ContextBuilder(store, FakeConversationStore()), project, "make the header sticky")
    header = context.relevant_files["src/components/Header.tsx"]
    assert header.relevance == KEYWORD_RELEVANCE
    assert header.reason == "Keyword match from prompt"
    # Logo is pulled in through Header's import.
    assert "src/components/Logo.tsx" in context.dependency_files


def test_semantic_channel_uses_hit_imports(store, project):
    version = _seed(store, project)
    index = FakeSemanticIndex(
        [SearchHit("src/lib/cart.ts", 0.82, "utility", ["./money"])]
    )
    context = _build(ContextBuilder(store, FakeConversationStore(), index), project, "fix totals")
    cart = context.relevant_files["src/lib/cart.ts"]
    assert cart.relevance == 0.82
    assert cart.reason == "Highly relevant utility (82% match)"
    assert list(context.dependency_files) == ["src/lib/money.ts"]
    assert index.calls[0]["version_id"] == version.id
    assert index.calls[0]["file_types"] == ["component", "utility", "api", "config"]


def test_include_tests_searches_every_file_type(store, project):
    _seed(store, project)
    index = FakeSemanticIndex()
    _build(
        ContextBuilder(store, FakeConversationStore(), index),
        project,
        "fix totals",
        ContextOptions(include_tests=True, max_files=3),
    )
    assert index.calls[0]["file_types"] is None
    assert index.calls[0]["limit"] == 3


def test_keyword_hit_not_overwritten_by_semantic(store, project):
    _seed(store, project)
    index = FakeSemanticIndex([SearchHit("src/components/Header.tsx", 0.5, "component")])
    context = _build(ContextBuilder(store, FakeConversationStore(), index), project, "header")
    assert context.relevant_files["src/components/Header.tsx"].relevance == KEYWORD_RELEVANCE


def test_semantic_hit_outside_snapshot_is_ignored(store, project):
    _seed(store, project)
    index = FakeSemanticIndex([SearchHit("src/deleted.ts", 0.9, "utility")])
    context = _build(ContextBuilder(store, FakeConversationStore(), index), project, "fix totals")
    assert context.relevant_files == {}


def test_content_fallback_when_other_channels_empty(store, project):
    _seed(store, project)
    context = _build(
        ContextBuilder(store, FakeConversationStore(), FakeSemanticIndex()),
        project,
        "replace ACME STORE with Acme",
    )
    logo = context.relevant_files["src/components/Logo.tsx"]
    assert logo.relevance == CONTENT_RELEVANCE
    assert logo.reason == "Content match for search terms"


def test_semantic_failure_degrades_to_warning(store, project):
    _seed(store, project)
    index = FakeSemanticIndex(error=RuntimeError("index offline"))
    context = _build(ContextBuilder(store, FakeConversationStore(), index), project, "header")
    assert "src/components/Header.tsx" in context.relevant_files
    assert any("index offline" in w for w in context.warnings)


def test_history_failure_degrades_to_warning(store, project):
    _seed(store, project)
    conversations = FakeConversationStore(error=RuntimeError("db locked"))
    context = _build(ContextBuilder(store, conversations), project, "header")
    assert context.conversation == []
    assert any("db locked" in w for w in context.warnings)


def test_nothing_matches_in_large_project(store, project):
    files = {f"src/modules/mod{i}/service{i}.ts": f"export const s{i} = {i}" for i in range(198)}
    files["package.json"] = '{"name": "big"}'
    files["README.md"] = "# Big project"
    _seed(store, project, files)

    context = _build(
        ContextBuilder(store, FakeConversationStore(), FakeSemanticIndex()),
        project,
        "zzz qqq",
    )
    assert context.relevant_files == {}
    assert context.dependency_files == {}
    assert set(context.config_files) == {"package.json", "README.md"}
    assert context.stats.project_files == 200


# ------------------------------------------------------------------
# Budget, summary, formatting
# ------------------------------------------------------------------


def test_budget_applies_to_each_pool(store, project):
    _seed(store, project)
    conversations = FakeConversationStore()
    conversations.messages[project.id] = [
        {"role": "user", "content": "x" * 200} for _ in range(10)
    ]
    builder = ContextBuilder(store, conversations, allocation=BudgetAllocation(total_chars=1_000))
    context = _build(builder, project, "header")
    assert len(context.conversation) < 10
    assert context.stats.estimated_tokens == context.stats.estimated_chars // 4


def test_summary_text(store, project):
    _seed(store, project)
    conversations = FakeConversationStore()
    conversations.messages[project.id] = [{"role": "user", "content": "hi"}]
    context = _build(ContextBuilder(store, conversations), project, "header")
    assert context.summary == (
        "Selected 1/6 files via keyword match (1). Conversation: 1 messages."
    )


@pytest.mark.parametrize(
    "prompt,hits,expected",
    [
        ("fix totals", [SearchHit("src/lib/cart.ts", 0.82, "utility")], "via semantic search (1)."),
        ("replace ACME STORE with Acme", [], "via content search (1)."),
        ("zzz qqq", [], "via no matching channel."),
    ],
)
def test_summary_names_contributing_channels(store, project, prompt, hits, expected):
    _seed(store, project)
    builder = ContextBuilder(store, FakeConversationStore(), FakeSemanticIndex(hits))
    context = _build(builder, project, prompt)
    assert expected in context.summary
    assert "semantic" not in context.summary or hits


def test_no_pool_exceeds_its_share(store, project):
    files = {
        "package.json": "{" + "p" * 300 + "}",
        "tsconfig.json": "{" + "t" * 300 + "}",
        "src/components/Header.tsx": "import { Logo } from './Logo'\n" + "h" * 600,
        "src/components/HeaderMenu.tsx": "import { Nav } from './Nav'\n" + "m" * 600,
        "src/components/Logo.tsx": "l" * 400,
        "src/components/Nav.tsx": "n" * 400,
    }
    _seed(store, project, files)
    allocation = BudgetAllocation(total_chars=1_000)
    builder = ContextBuilder(store, FakeConversationStore(), allocation=allocation)
    context = _build(builder, project, "make the header sticky")

    slack = len(TRUNCATION_MARKER)
    assert pool_size(context.config_files) <= allocation.config + slack
    assert pool_size(context.relevant_files) <= allocation.relevant + slack
    assert pool_size(context.dependency_files) <= allocation.dependencies + slack
    # The top file of each pool survives, truncated if needed.
    assert context.config_files
    assert context.relevant_files
    assert context.dependency_files


def test_format_for_prompt_sections_in_order(store, project):
    _seed(store, project)
    conversations = FakeConversationStore()
    conversations.messages[project.id] = [
        {"role": "user", "content": f"turn {i}"} for i in range(7)
    ]
    context = _build(ContextBuilder(store, conversations), project, "make the header sticky")
    text = format_for_prompt(context, "make the header sticky")

    headings = [
        "# Context Summary",
        "## Recent Conversation",
        "## Configuration Files",
        "## Relevant Files",
        "## Related Dependencies",
        "## New Request",
    ]
    positions = [text.index(h) for h in headings]
    assert positions == sorted(positions)
    assert "turn 1" not in text
    assert "**user**: turn 6" in text
    assert "*Keyword match from prompt*" in text
    assert text.endswith("make the header sticky")
