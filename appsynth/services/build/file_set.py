"""The accumulated file set of a build and its merge rule.

Merge rule, applied identically to builder changes and repair patches:

- ``create`` on a path that already exists is a no-op (first writer wins).
- ``update``, or any change to a new path, replaces or appends the entry.
- ``delete`` is ignored.  Files are never removed automatically.

Content is sanitised before it is stored: an outer markdown fence is
stripped, double-escaped text is decoded, and HTML entities are
unescaped in code files.
"""

import html
import logging
import re

from appsynth.services.build.models import FileChange, ProjectFile
from appsynth.services.json_extractor import strip_fences

logger = logging.getLogger(__name__)

# Conventional bootstrap modules, in lookup order
ENTRY_CANDIDATES: tuple[str, ...] = (
    "src/main.tsx",
    "src/index.tsx",
    "src/main.jsx",
    "src/index.jsx",
    "main.tsx",
    "index.tsx",
)

_CODE_EXTENSIONS = frozenset({
    ".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs", ".css", ".scss", ".json",
})

_ENTITY_RE = re.compile(r"&(?:lt|gt|amp|quot|apos|#39|#x27|#\d+);")
_ESCAPES = {"\\n": "\n", "\\t": "\t", '\\"': '"', "\\'": "'", "\\\\": "\\"}
_ESCAPE_RE = re.compile(r"\\[nt\"'\\]")


def _is_code_file(path: str) -> bool:
    dot = path.rfind(".")
    return dot != -1 and path[dot:].lower() in _CODE_EXTENSIONS


def _bare_escaped_newlines(text: str) -> int:
    """Count literal ``\\n`` sequences that sit outside quoted literals."""
    count = 0
    quote = None
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text):
            if quote is None and text[i + 1] == "n":
                count += 1
            i += 2
            continue
        if quote is not None:
            if ch == quote:
                quote = None
        elif ch in "\"'`":
            quote = ch
        i += 1
    return count


def sanitize_content(path: str, content: str) -> str:
    """Clean model-written file content before it is stored."""
    text = strip_fences(content) if content.lstrip().startswith("```") else content
    # Double-escaped: one long line whose line breaks are literal "\n"
    # sequences; escapes inside string literals are real code
    if "\n" not in text and _bare_escaped_newlines(text) > 1:
        text = _ESCAPE_RE.sub(lambda m: _ESCAPES[m.group(0)], text)
    if _is_code_file(path) and _ENTITY_RE.search(text):
        text = html.unescape(text)
    return text


def normalize_path(path: str) -> str:
    """Strip leading ``./`` and ``/`` so paths compare as keys."""
    path = path.strip().replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return path.lstrip("/")


class FileSet:
    """Ordered path -> file map owned by one supervisor run."""

    def __init__(self, files: list[ProjectFile] | None = None, entry_path: str | None = None) -> None:
        self._files: dict[str, ProjectFile] = {}
        for f in files or []:
            self._files[normalize_path(f.path)] = f.model_copy(update={"path": normalize_path(f.path)})
        self.entry_path = entry_path
        self.revision = 0

    def __contains__(self, path: str) -> bool:
        return normalize_path(path) in self._files

    def __len__(self) -> int:
        return len(self._files)

    def paths(self) -> list[str]:
        return list(self._files)

    def content(self, path: str) -> str | None:
        f = self._files.get(normalize_path(path))
        return f.content if f else None

    def snapshot(self) -> list[ProjectFile]:
        """Copies of every file, in insertion order."""
        return [f.model_copy() for f in self._files.values()]

    def context_view(self, limit: int) -> list[dict]:
        """Paths with content truncated to *limit* characters, for prompts."""
        return [
            {"path": p, "content": f.content[:limit]}
            for p, f in self._files.items()
            if f.kind == "file"
        ]

    def apply(self, changes: list[FileChange]) -> list[str]:
        """Merge *changes* and return the paths whose content changed."""
        written: list[str] = []
        for change in changes:
            path = normalize_path(change.path)
            if not path:
                logger.warning("Ignoring file change with empty path")
                continue
            if change.action == "delete":
                logger.info("Ignoring delete of %s (files are never removed automatically)", path)
                continue
            if change.is_entry:
                self.entry_path = path
            if change.action == "create" and path in self._files:
                logger.debug("create on existing %s ignored", path)
                continue
            content = sanitize_content(path, change.content)
            existing = self._files.get(path)
            if existing is not None and existing.content == content:
                continue
            self._files[path] = ProjectFile(path=path, content=content)
            written.append(path)
        if written:
            self.revision += 1
        return written

    def has_entry_point(self) -> bool:
        """A recorded entry that exists, or any conventional entry file."""
        if self.entry_path and self.entry_path in self._files:
            return True
        return any(c in self._files for c in ENTRY_CANDIDATES)
