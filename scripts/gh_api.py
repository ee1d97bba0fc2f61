"""
gh_api.py — GitHub REST calls made through the `gh` CLI.

Every call goes through _gh_api so tests can replace a single function.
Read helpers raise GitHubAPIError on failure; callers decide whether a
failure is fatal (PR metadata, diffs) or degrades the review (file content).
"""

import base64
import binascii
import json
import os
import subprocess
from urllib.parse import quote

from review_models import CommentAnchor, PRContext

DIFF_ACCEPT = "Accept: application/vnd.github.v3.diff"


class GitHubAPIError(RuntimeError):
    pass


def _gh_api(args: list[str], timeout: int = 15, input_data: str | None = None,
            token: str | None = None) -> tuple[int, str, str]:
    """Run gh api command."""
    env = None
    if token:
        env = {**os.environ, "GH_TOKEN": token}
    try:
        result = subprocess.run(
            ["gh", "api"] + args,
            capture_output=True, text=True, timeout=timeout,
            input=input_data, env=env,
        )
        return result.returncode, result.stdout, result.stderr
    except subprocess.TimeoutExpired:
        return -1, "", "timeout"
    except (OSError, subprocess.SubprocessError) as e:
        return -1, "", str(e)


def _call(args: list[str], what: str, token: str | None, timeout: int = 15) -> str:
    rc, stdout, stderr = _gh_api(args, timeout=timeout, token=token)
    if rc != 0:
        raise GitHubAPIError(f"{what} failed: {stderr.strip()[:200]}")
    return stdout


def get_pull_request(owner: str, repo: str, pull_number: int,
                     token: str | None = None) -> PRContext:
    """Fetch title, body and head commit of a pull request."""
    stdout = _call(
        [f"repos/{owner}/{repo}/pulls/{pull_number}"],
        f"Fetching PR #{pull_number}", token,
    )
    try:
        data = json.loads(stdout)
        head_sha = data["head"]["sha"]
    except (json.JSONDecodeError, KeyError, TypeError) as e:
        raise GitHubAPIError(f"Unexpected pull request payload: {e}") from e
    return PRContext(
        owner=owner,
        repo=repo,
        pull_number=pull_number,
        title=data.get("title") or "",
        description=data.get("body") or "",
        head_sha=head_sha,
    )


def get_pull_request_diff(owner: str, repo: str, pull_number: int,
                          token: str | None = None) -> str:
    return _call(
        [f"repos/{owner}/{repo}/pulls/{pull_number}", "-H", DIFF_ACCEPT],
        f"Fetching diff for PR #{pull_number}", token, timeout=30,
    )


def get_commit_range_diff(owner: str, repo: str, base: str, head: str,
                          token: str | None = None) -> str:
    return _call(
        [f"repos/{owner}/{repo}/compare/{base}...{head}", "-H", DIFF_ACCEPT],
        f"Comparing {base[:7]}...{head[:7]}", token, timeout=30,
    )


def get_file_content(owner: str, repo: str, path: str, ref: str,
                     token: str | None = None) -> str:
    """Return the UTF-8 text of a file at ref.

    Raises GitHubAPIError when the path is absent, is a directory, or the
    content is not text.
    """
    stdout = _call(
        [f"repos/{owner}/{repo}/contents/{quote(path)}?ref={quote(ref, safe='')}"],
        f"Fetching {path}", token,
    )
    try:
        data = json.loads(stdout)
    except json.JSONDecodeError as e:
        raise GitHubAPIError(f"Unexpected contents payload for {path}") from e
    if not isinstance(data, dict) or "content" not in data:
        raise GitHubAPIError(f"Missing content for {path}")
    try:
        raw = base64.b64decode(data["content"])
        return raw.decode("utf-8")
    except (binascii.Error, ValueError) as e:
        raise GitHubAPIError(f"{path} is not a UTF-8 text file") from e


def create_review(pr: PRContext, anchors: list[CommentAnchor], body: str = "",
                  token: str | None = None) -> dict:
    """Create one COMMENT review carrying every anchor."""
    payload: dict = {
        "commit_id": pr.head_sha,
        "event": "COMMENT",
        "comments": [
            {"path": a.path, "line": a.line, "side": "RIGHT", "body": a.body}
            for a in anchors
        ],
    }
    if body:
        payload["body"] = body

    rc, stdout, stderr = _gh_api([
        f"repos/{pr.full_name}/pulls/{pr.pull_number}/reviews",
        "--method", "POST", "--input", "-",
    ], timeout=30, input_data=json.dumps(payload, ensure_ascii=False), token=token)
    if rc != 0:
        raise GitHubAPIError(f"Creating review failed: {stderr.strip()[:300]}")
    try:
        return json.loads(stdout) if stdout.strip() else {}
    except json.JSONDecodeError:
        return {}
