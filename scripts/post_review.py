"""
post_review.py — Turn model findings into inline comments and post them.

Findings are projected onto (path, line, body) anchors on the new side of
the diff. All anchors of a run go out in one COMMENT review: the review is
either created with every comment or the run fails. A verdict
(APPROVE / REQUEST_CHANGES) is never posted.
"""

import math

import gh_api
from review_models import CommentAnchor, FileChange, Hunk, PRContext, ReviewFinding


class ReviewSubmissionError(RuntimeError):
    pass


# ---------------------------------------------------------------------------
# Projection
# ---------------------------------------------------------------------------

def coerce_line_number(value) -> int | None:
    """Coerce an untrusted lineNumber to an int, or None if it is not one."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    if math.isfinite(number) and number.is_integer():
        return int(number)
    return None


def project_comments(file_change: FileChange, hunk: Hunk,
                     findings: list[ReviewFinding]) -> list[CommentAnchor]:
    """Map findings for one hunk onto comment anchors in the target file."""
    anchors = []
    for finding in findings:
        if not file_change.target_path:
            continue
        line = coerce_line_number(finding.line_number)
        if line is None:
            print(
                f"    Dropping finding on {file_change.target_path} ({hunk.header.strip()}): "
                f"lineNumber {finding.line_number!r} is not a number"
            )
            continue
        anchors.append(CommentAnchor(path=file_change.target_path, line=line, body=finding.review_comment))
    return anchors


# ---------------------------------------------------------------------------
# Review posting
# ---------------------------------------------------------------------------

def build_review_body(review_header: str) -> str:
    if not review_header:
        return ""
    return f"{review_header}\nInline comments from automated review."


def submit_review(pr: PRContext, anchors: list[CommentAnchor],
                  review_header: str = "", token: str | None = None) -> bool:
    """Post every anchor as one COMMENT review. Returns False when there was nothing to post.

    Raises ReviewSubmissionError if GitHub rejects the review, including
    when a single anchor falls outside the diff.
    """
    if not anchors:
        print("No review comments to post.")
        return False

    print(f"Posting review with {len(anchors)} comment{'s' if len(anchors) != 1 else ''} "
          f"on {pr.full_name}#{pr.pull_number} @ {pr.head_sha[:7]}")
    try:
        gh_api.create_review(pr, anchors, build_review_body(review_header), token=token)
    except gh_api.GitHubAPIError as e:
        raise ReviewSubmissionError(str(e)) from e

    print(f"  Review posted ({len(anchors)} comments)")
    return True
