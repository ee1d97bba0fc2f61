"""
review_models.py — Records passed between the review stages.

Diff structure (FileChange / Hunk / Line) is produced by prepare_context.py,
findings by llm_review.py and anchors by post_review.py.
"""

from dataclasses import dataclass

ADDED = "added"
REMOVED = "removed"
CONTEXT = "context"
MARKER = "marker"  # "\ No newline at end of file"


@dataclass(frozen=True)
class Line:
    content: str
    kind: str
    old_line_number: int | None = None
    new_line_number: int | None = None


@dataclass(frozen=True)
class Hunk:
    header: str
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: tuple[Line, ...] = ()


@dataclass(frozen=True)
class FileChange:
    """One file section of a unified diff.

    target_path is None when the file was deleted; source_path is None
    when it was added.
    """

    source_path: str | None
    target_path: str | None
    hunks: tuple[Hunk, ...] = ()

    @property
    def is_deleted(self) -> bool:
        return not self.target_path


@dataclass(frozen=True)
class ReviewFinding:
    line_number: str
    review_comment: str


@dataclass(frozen=True)
class CommentAnchor:
    path: str
    line: int
    body: str


@dataclass(frozen=True)
class PRContext:
    owner: str
    repo: str
    pull_number: int
    title: str
    description: str
    head_sha: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"
