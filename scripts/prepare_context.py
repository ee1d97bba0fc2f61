"""
prepare_context.py — Turn the PR diff into reviewable units and gather file context.

It:
1. Parses the unified diff into FileChange records, one Hunk per `@@` block,
   each changed line tagged with its old/new line number
2. Drops deleted files and files matching the configured exclude globs
3. Serves the full post-change content of touched files through a run-scoped
   cache, so a file shared by several hunks is fetched once
"""

import functools
import re
import threading
from concurrent.futures import Future
from typing import Callable

from unidiff import PatchSet, UnidiffParseError
from unidiff.constants import DEV_NULL, LINE_TYPE_NO_NEWLINE

from review_models import ADDED, CONTEXT, MARKER, REMOVED, FileChange, Hunk, Line

NO_NEWLINE_MARKER = "\\ No newline at end of file"


# ---------------------------------------------------------------------------
# Diff parsing
# ---------------------------------------------------------------------------

def _unquote_path(path: str) -> str:
    """Undo git's C-style quoting of paths with spaces or non-ASCII bytes."""
    if len(path) >= 2 and path[0] == '"' and path[-1] == '"':
        inner = path[1:-1]
        try:
            return inner.encode("latin-1").decode("unicode_escape").encode("latin-1").decode("utf-8")
        except UnicodeError:
            return inner
    return path


def _clean_path(path: str | None, prefix: str) -> str | None:
    """Repository path from a unidiff file name. None means /dev/null."""
    if not path:
        return None
    path = _unquote_path(path.strip())
    if path == DEV_NULL:
        return None
    if path.startswith(prefix):
        path = path[len(prefix):]
    return path


def _patch_set(lines: list[str]) -> PatchSet:
    return PatchSet("\n".join(lines) + "\n")


def _split_sections(lines: list[str]) -> list[list[str]]:
    """Group diff lines by file.

    Git diffs split at `diff --git`; diffs without git headers split at a
    `---` line directly followed by a `+++` line.
    """
    git_headers = any(line.startswith("diff --git ") for line in lines)
    sections: list[list[str]] = []
    current: list[str] | None = None
    for i, raw in enumerate(lines):
        if git_headers:
            starts_file = raw.startswith("diff --git ")
        else:
            starts_file = raw.startswith("--- ") and i + 1 < len(lines) and lines[i + 1].startswith("+++ ")
        if starts_file or current is None:
            current = []
            sections.append(current)
        current.append(raw)
    return sections


def _split_hunks(section: list[str]) -> tuple[list[str], list[list[str]]]:
    """File header lines, then one block per `@@` line."""
    header: list[str] = []
    blocks: list[list[str]] = []
    for raw in section:
        if raw.startswith("@@"):
            blocks.append([raw])
        elif blocks:
            blocks[-1].append(raw)
        else:
            header.append(raw)
    return header, blocks


def _section_file(header: list[str]):
    """The PatchedFile a section header describes, or None."""
    try:
        patch = _patch_set(header)
    except UnidiffParseError:
        return None
    return patch[-1] if len(patch) else None


def _file_label(patched_file) -> str:
    if patched_file is None:
        return "<unknown>"
    return (
        _clean_path(patched_file.target_file, "b/")
        or _clean_path(patched_file.source_file, "a/")
        or "<unknown>"
    )


def _convert_hunk(header_line: str, hunk) -> Hunk:
    lines = []
    for line in hunk:
        if line.line_type == LINE_TYPE_NO_NEWLINE:
            lines.append(Line(NO_NEWLINE_MARKER, MARKER))
            continue
        content = line.line_type + line.value.rstrip("\r\n")
        if line.is_added:
            lines.append(Line(content, ADDED, new_line_number=line.target_line_no))
        elif line.is_removed:
            lines.append(Line(content, REMOVED, old_line_number=line.source_line_no))
        else:
            lines.append(Line(content, CONTEXT, line.source_line_no, line.target_line_no))
    return Hunk(
        header=header_line.rstrip("\r"),
        old_start=hunk.source_start,
        old_count=hunk.source_length,
        new_start=hunk.target_start,
        new_count=hunk.target_length,
        lines=tuple(lines),
    )


def _parse_block(header: list[str], block: list[str], label: str):
    """Parse one `@@` block under its file header. Returns (PatchedFile, Hunk) or None."""
    try:
        patch = _patch_set(header + block)
    except UnidiffParseError as e:
        print(f"  Warning: Skipping malformed hunk in {label}: {block[0].strip()} ({e})")
        return None

    with_hunks = [patched_file for patched_file in patch if len(patched_file)]
    if not with_hunks:
        print(f"  Warning: Skipping malformed hunk header in {label}: {block[0][:80]}")
        return None

    patched_file = with_hunks[-1]
    hunk = patched_file[0]
    if not hunk.is_valid():
        print(f"  Warning: Skipping malformed hunk in {label}: {block[0].strip()}")
        return None
    return patched_file, _convert_hunk(block[0], hunk)


def parse_diff(diff_text: str) -> list[FileChange]:
    """Parse unified diff text into FileChange records.

    Files without hunks (binary, mode-only, pure renames) are left out.
    A malformed hunk is dropped with a warning; the rest of the diff is
    still parsed.
    """
    lines = diff_text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()

    file_changes: list[FileChange] = []
    for section in _split_sections(lines):
        header, blocks = _split_hunks(section)
        section_file = _section_file(header)
        label = _file_label(section_file)

        patched_file = None
        hunks: list[Hunk] = []
        for block in blocks:
            parsed = _parse_block(header, block, label)
            if parsed is None:
                continue
            patched_file, hunk = parsed
            hunks.append(hunk)

        if not hunks:
            if section_file is not None and section_file.is_binary_file:
                print(f"  Skipping binary file {label}")
            continue

        file_changes.append(FileChange(
            source_path=_clean_path(patched_file.source_file, "a/"),
            target_path=_clean_path(patched_file.target_file, "b/"),
            hunks=tuple(hunks),
        ))
    return file_changes


# ---------------------------------------------------------------------------
# Path filtering
# ---------------------------------------------------------------------------

def _expand_braces(pattern: str) -> list[str]:
    """`*.{md,txt}` -> [`*.md`, `*.txt`]."""
    start = pattern.find("{")
    if start == -1:
        return [pattern]
    end = pattern.find("}", start)
    if end == -1 or "," not in pattern[start:end]:
        return [pattern]
    head, tail = pattern[:start], pattern[end + 1:]
    expanded = []
    for option in pattern[start + 1:end].split(","):
        expanded.extend(_expand_braces(head + option + tail))
    return expanded


def _translate_glob(pattern: str) -> str:
    """Regex for one glob: `*` and `?` stay inside a path segment, `**` spans segments."""
    out = []
    i, n = 0, len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            globstar = (
                pattern.startswith("**", i)
                and (i == 0 or pattern[i - 1] == "/")
                and (i + 2 == n or pattern[i + 2] == "/")
            )
            if globstar and i + 2 == n:
                out.append(".*")
                i += 2
            elif globstar:
                # `**/` matches zero or more directories
                out.append("(?:[^/]+/)*")
                i += 3
            else:
                out.append("[^/]*")
                while i < n and pattern[i] == "*":
                    i += 1
            continue
        if c == "?":
            out.append("[^/]")
        elif c == "[":
            end = pattern.find("]", i + 2)
            if end == -1:
                out.append(re.escape(c))
            else:
                body = pattern[i + 1:end].replace("\\", "\\\\")
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                i = end + 1
                continue
        else:
            out.append(re.escape(c))
        i += 1
    return "".join(out)


@functools.lru_cache(maxsize=None)
def _compile_glob(pattern: str) -> re.Pattern:
    alternatives = [_translate_glob(p) for p in _expand_braces(pattern)]
    return re.compile("|".join(f"(?:{a})" for a in alternatives))


def match_file_to_globs(filepath: str, patterns: list[str]) -> str | None:
    """Return the first pattern that matches filepath (case-sensitive), if any."""
    for pattern in patterns:
        if pattern and _compile_glob(pattern).fullmatch(filepath):
            return pattern
    return None


def filter_file_changes(file_changes: list[FileChange], exclude_patterns: list[str]) -> list[FileChange]:
    """Drop deleted files and files whose new path matches an exclude glob."""
    kept = []
    for file_change in file_changes:
        if file_change.is_deleted:
            print(f"  Skipping deleted file {file_change.source_path}")
            continue
        pattern = match_file_to_globs(file_change.target_path, exclude_patterns)
        if pattern:
            print(f"  Excluded {file_change.target_path} (matches '{pattern}')")
            continue
        kept.append(file_change)
    return kept


# ---------------------------------------------------------------------------
# Full-file context
# ---------------------------------------------------------------------------

class FileContentCache:
    """Run-scoped map of path -> full file text at the PR head commit.

    The first caller for a path performs the fetch; concurrent callers for
    the same path wait on that fetch. A failed fetch is cached as "".
    """

    def __init__(self, fetch: Callable[[str], str]):
        self._fetch = fetch
        self._lock = threading.Lock()
        self._entries: dict[str, Future] = {}

    def get(self, path: str) -> str:
        with self._lock:
            entry = self._entries.get(path)
            owner = entry is None
            if owner:
                entry = Future()
                self._entries[path] = entry

        if owner:
            try:
                content = self._fetch(path) or ""
            except Exception as e:
                print(f"  Warning: Unable to fetch full file content for {path}: {e}")
                content = ""
            entry.set_result(content)

        return entry.result()
