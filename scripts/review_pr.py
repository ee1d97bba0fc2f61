#!/usr/bin/env python3
"""
review_pr.py — Review a pull request hunk by hunk and post inline comments.

Entry point of the action. It:
1. Reads the triggering pull_request event from GITHUB_EVENT_PATH
2. Fetches the full PR diff for `opened`, or only the pushed commit range
   (before...after) for `synchronize`; other actions are ignored
3. Parses the diff and drops deleted/excluded files
4. For every hunk: builds a prompt with the full file as context, asks the
   model for findings and projects them onto comment anchors
5. Posts all anchors as a single COMMENT review

Exits non-zero only on fatal errors (unreadable event, GitHub read failures,
rejected review). Per-hunk model or file-fetch failures only degrade the
review.
"""

import json
import os
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import gh_api
from config_loader import load_config
from llm_review import build_requester, build_review_prompt
from post_review import project_comments, submit_review
from prepare_context import FileContentCache, filter_file_changes, parse_diff
from review_models import CommentAnchor, FileChange, Hunk, PRContext

SUBMITTED = "submitted"
SKIPPED = "skipped"
UNSUPPORTED = "unsupported"

OPENED = "opened"
SYNCHRONIZE = "synchronize"


# ---------------------------------------------------------------------------
# Event handling
# ---------------------------------------------------------------------------

def load_event(event_path: str | None = None) -> dict:
    event_path = event_path or os.environ.get("GITHUB_EVENT_PATH", "")
    if not event_path:
        raise RuntimeError("GITHUB_EVENT_PATH is not set")
    return json.loads(Path(event_path).read_text(encoding="utf-8"))


def event_target(event: dict) -> tuple[str, str, int]:
    """Owner, repo and PR number of the triggering event."""
    try:
        repository = event["repository"]
        owner = repository["owner"]["login"]
        repo = repository["name"]
    except (KeyError, TypeError) as e:
        raise ValueError(f"Event payload is missing repository details: {e}") from e

    number = event.get("number")
    if number is None:
        number = (event.get("pull_request") or {}).get("number")
    if number is None:
        raise ValueError("Event payload has no pull request number")
    return owner, repo, int(number)


def fetch_diff(event: dict, pr: PRContext, token: str | None) -> str:
    """Full PR diff on open, pushed commit range on synchronize."""
    if event.get("action") == OPENED:
        print("Fetching full pull request diff")
        return gh_api.get_pull_request_diff(pr.owner, pr.repo, pr.pull_number, token)

    before, after = event.get("before"), event.get("after")
    if not before or not after:
        raise ValueError("synchronize event is missing before/after commits")
    print(f"Fetching diff for pushed commits {before[:7]}...{after[:7]}")
    return gh_api.get_commit_range_diff(pr.owner, pr.repo, before, after, token)


# ---------------------------------------------------------------------------
# Per-hunk review
# ---------------------------------------------------------------------------

def review_hunk(pr: PRContext, file_change: FileChange, hunk: Hunk,
                cache: FileContentCache, requester) -> list[CommentAnchor]:
    full_file = cache.get(file_change.target_path)
    prompt = build_review_prompt(file_change, hunk, pr, full_file)
    findings = requester.request_findings(prompt)
    anchors = project_comments(file_change, hunk, findings)
    print(f"  {file_change.target_path} {hunk.header.strip()}: "
          f"{len(findings)} finding(s), {len(anchors)} comment(s)")
    return anchors


def review_hunks(pr: PRContext, file_changes: list[FileChange], cache: FileContentCache,
                 requester, max_workers: int = 1) -> list[CommentAnchor]:
    """Review every hunk; anchors come back in diff order."""
    jobs = [(fc, hunk) for fc in file_changes for hunk in fc.hunks]
    anchors: list[CommentAnchor] = []
    if not jobs:
        return anchors

    if max_workers <= 1:
        for file_change, hunk in jobs:
            anchors.extend(review_hunk(pr, file_change, hunk, cache, requester))
        return anchors

    with ThreadPoolExecutor(max_workers=min(max_workers, len(jobs))) as executor:
        futures = [
            executor.submit(review_hunk, pr, file_change, hunk, cache, requester)
            for file_change, hunk in jobs
        ]
        for future in futures:
            anchors.extend(future.result())
    return anchors


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def run_review(event: dict, config: dict, requester=None) -> str:
    """Run one review. Returns SUBMITTED, SKIPPED or UNSUPPORTED."""
    action = event.get("action", "")
    if action not in (OPENED, SYNCHRONIZE):
        event_name = os.environ.get("GITHUB_EVENT_NAME", "unknown")
        print(f"Unsupported event: {event_name} (action: {action or 'none'}). Nothing to review.")
        return UNSUPPORTED

    token = config.get("github", {}).get("token") or None
    owner, repo, number = event_target(event)
    pr = gh_api.get_pull_request(owner, repo, number, token)
    print(f"Reviewing {pr.full_name}#{pr.pull_number}: {pr.title}")

    diff = fetch_diff(event, pr, token)
    if not diff or not diff.strip():
        print("No diff found. Exiting.")
        return SKIPPED
    print(f"Diff size: {len(diff)} chars")

    file_changes = parse_diff(diff)
    exclude_patterns = config.get("files", {}).get("exclude", [])
    file_changes = filter_file_changes(file_changes, exclude_patterns)
    hunk_count = sum(len(fc.hunks) for fc in file_changes)
    print(f"Files to review: {len(file_changes)}, hunks: {hunk_count}")
    if not file_changes:
        print("No reviewable files after filtering. Exiting.")
        return SKIPPED

    if requester is None:
        requester = build_requester(config)
    cache = FileContentCache(
        lambda path: gh_api.get_file_content(pr.owner, pr.repo, path, pr.head_sha, token)
    )
    max_workers = int(config.get("review", {}).get("max_workers", 1))

    anchors = review_hunks(pr, file_changes, cache, requester, max_workers)

    print_stats = getattr(requester, "print_stats", None)
    if print_stats:
        print_stats()
    print(f"Comments: {len(anchors)}")

    review_header = config.get("branding", {}).get("review_header", "")
    if submit_review(pr, anchors, review_header, token):
        return SUBMITTED
    return SKIPPED


def main():
    print("=== Review Agent: Hunk Review ===")
    try:
        config = load_config()
        event = load_event()
        outcome = run_review(event, config)
    except Exception as e:
        print(f"ERROR: Unhandled error: {type(e).__name__}: {e}")
        sys.exit(1)
    print(f"=== Review Complete ({outcome}) ===")


if __name__ == "__main__":
    main()
