"""Import extraction and resolution against a snapshot's paths."""

from __future__ import annotations

import posixpath
import re

ALIAS_PREFIX = "@/"
ALIAS_ROOT = "src/"
RESOLVE_SUFFIXES: tuple[str, ...] = (
    "", ".ts", ".tsx", ".js", ".jsx", "/index.ts", "/index.tsx", "/index.js",
)

_IMPORT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"""import\s+(?:[^'"]*?\s+from\s+)?['"]([^'"]+)['"]"""),
    re.compile(r"""export\s+[^'"]*?\s+from\s+['"]([^'"]+)['"]"""),
    re.compile(r"""require\(\s*['"]([^'"]+)['"]\s*\)"""),
    re.compile(r"""import\(\s*['"]([^'"]+)['"]\s*\)"""),
)


def extract_imports(content: str) -> list[str]:
    """Module specifiers imported by *content* (ES modules and CommonJS), in order."""
    found: list[str] = []
    for pattern in _IMPORT_PATTERNS:
        found.extend(pattern.findall(content))
    return list(dict.fromkeys(found))


def _first_existing(base: str, files: dict[str, str]) -> str | None:
    for suffix in RESOLVE_SUFFIXES:
        candidate = base + suffix
        if candidate in files:
            return candidate
    return None


def resolve_import_path(import_path: str, from_file: str, files: dict[str, str]) -> str | None:
    """Resolve *import_path* as written in *from_file* to a snapshot path.

    Relative specifiers walk from the importing file's directory; ``@/``
    specifiers are rewritten to ``src/``. Package imports resolve to None.
    """
    if import_path.startswith(("./", "../")):
        from_dir = posixpath.dirname(from_file)
        joined = posixpath.normpath(posixpath.join(from_dir, import_path))
        if joined in (".", "..") or joined.startswith("../"):
            return None
        return _first_existing(joined, files)

    if import_path.startswith(ALIAS_PREFIX):
        return _first_existing(ALIAS_ROOT + import_path[len(ALIAS_PREFIX):], files)

    return None


def resolve_dependencies(
    selected: dict[str, list[str]],
    files: dict[str, str],
    exclude: set[str] | frozenset[str] = frozenset(),
) -> dict[str, str]:
    """Resolve the imports of every selected file.

    Args:
        selected: path → recorded imports, in selection order.
        files: The previous snapshot.
        exclude: Paths already in the context (not repeated as dependencies).

    Returns:
        Newly resolved path → content, in discovery order.
    """
    dependencies: dict[str, str] = {}
    for from_file, imports in selected.items():
        for import_path in imports:
            resolved = resolve_import_path(import_path, from_file, files)
            if resolved and resolved not in exclude and resolved not in dependencies:
                dependencies[resolved] = files[resolved]
    return dependencies
