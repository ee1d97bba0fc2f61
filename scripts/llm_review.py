"""
llm_review.py — Ask the model to review one hunk at a time.

For every hunk a single prompt is built that carries the PR intent, the full
post-change file and the hunk with explicit line numbers. The model must
answer with {"reviews": [{"lineNumber": ..., "reviewComment": ...}]}; the
reply is decoded strictly into ReviewFinding records.

Two completion providers are supported:
  - azure: Azure OpenAI chat completions in JSON mode (default)
  - anthropic: Claude Messages API

Runs in dry-run mode when no API key is configured.
"""

import json
import os
import threading
from pathlib import PurePosixPath

import anthropic
from openai import AzureOpenAI

from review_models import FileChange, Hunk, PRContext, ReviewFinding

PROVIDERS = ("azure", "anthropic")
DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-20250514"
DEFAULT_MAX_TOKENS = 4096

LANGUAGE_HINTS = {
    ".py": "python", ".ts": "ts", ".tsx": "tsx", ".js": "js", ".jsx": "jsx",
    ".go": "go", ".rs": "rust", ".java": "java", ".kt": "kotlin", ".rb": "ruby",
    ".php": "php", ".cs": "csharp", ".c": "c", ".h": "c", ".cpp": "cpp",
    ".swift": "swift", ".sh": "bash", ".sql": "sql", ".yml": "yaml",
    ".yaml": "yaml", ".json": "json", ".md": "markdown", ".html": "html",
    ".css": "css",
}


class ReviewDecodeError(ValueError):
    pass


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------

REVIEW_INSTRUCTIONS = """Your task is to review pull requests. Instructions:
- Provide the response in following JSON format: {"reviews": [{"lineNumber": <line_number>, "reviewComment": "<review comment>"}]}
- "lineNumber" must be one of the numbers printed in front of the diff lines below.
- Do not give positive comments or compliments.
- Provide comments and suggestions ONLY if there is something to improve, otherwise "reviews" should be an empty array.
- Write the comment in GitHub Markdown format.
- Use the given description only for the overall context and only comment the code. Do not review the description itself.
- IMPORTANT: NEVER suggest adding comments to the code."""


def language_hint(path: str | None) -> str:
    if not path:
        return ""
    return LANGUAGE_HINTS.get(PurePosixPath(path).suffix.lower(), "")


def format_hunk_lines(hunk: Hunk) -> str:
    """Hunk body with each line prefixed by its new (else old) line number."""
    rendered = []
    for line in hunk.lines:
        if line.new_line_number is not None:
            rendered.append(f"{line.new_line_number} {line.content}")
        elif line.old_line_number is not None:
            rendered.append(f"{line.old_line_number} {line.content}")
        else:
            rendered.append(line.content)
    return "\n".join(rendered)


def build_review_prompt(file_change: FileChange, hunk: Hunk, pr: PRContext, full_file: str) -> str:
    """Build the review prompt for one hunk. Same inputs, same text."""
    parts = [REVIEW_INSTRUCTIONS, ""]

    parts.append(f"You are reviewing changes in file: {file_change.target_path}")
    parts.append("")
    parts.append(f"Pull request title: {pr.title}")
    parts.append("Pull request description:")
    parts.append("---")
    parts.append(pr.description)
    parts.append("---")
    parts.append("")

    parts.append("Here is the full content of the file after the changes:")
    parts.append(f"```{language_hint(file_change.target_path)}")
    parts.append(full_file)
    parts.append("```")
    parts.append("")

    parts.append("And here is the diff to focus on:")
    parts.append("```diff")
    parts.append(hunk.header)
    parts.append(format_hunk_lines(hunk))
    parts.append("```")

    return "\n".join(parts)


# ---------------------------------------------------------------------------
# Response decoding
# ---------------------------------------------------------------------------

def _extract_json(raw_text: str):
    """Extract a JSON object from model output, handling markdown fences."""
    raw_text = raw_text.strip()
    try:
        if raw_text.startswith("```"):
            raw_text = raw_text.split("\n", 1)[-1].rsplit("```", 1)[0].strip()
        json_start = raw_text.find("{")
        json_end = raw_text.rfind("}") + 1
        if json_start >= 0 and json_end > json_start:
            return json.loads(raw_text[json_start:json_end])
        return json.loads(raw_text)
    except json.JSONDecodeError:
        return None


def decode_review_response(raw_text: str) -> list[ReviewFinding]:
    """Decode a model reply into findings.

    Raises ReviewDecodeError when the reply is not a JSON object with a
    "reviews" list. Individual entries of the wrong shape are dropped.
    """
    data = _extract_json(raw_text or "")
    if not isinstance(data, dict):
        raise ReviewDecodeError("response is not a JSON object")
    if "reviews" not in data:
        raise ReviewDecodeError('response has no "reviews" field')
    reviews = data["reviews"]
    if not isinstance(reviews, list):
        raise ReviewDecodeError('"reviews" is not a list')

    findings = []
    for entry in reviews:
        if not isinstance(entry, dict):
            print(f"    Dropping review entry that is not an object: {str(entry)[:80]}")
            continue
        line_number = entry.get("lineNumber")
        comment = entry.get("reviewComment")
        if isinstance(line_number, bool) or not isinstance(line_number, (str, int, float)):
            print(f"    Dropping review entry without a usable lineNumber: {str(entry)[:80]}")
            continue
        # GitHub rejects an empty comment body, which would fail the whole review
        if not isinstance(comment, str) or not comment.strip():
            print(f"    Dropping review entry without a reviewComment: {str(entry)[:80]}")
            continue
        findings.append(ReviewFinding(line_number=str(line_number), review_comment=comment))
    return findings


# ---------------------------------------------------------------------------
# Completion requests
# ---------------------------------------------------------------------------

class ReviewRequester:
    """Sends one completion request per hunk and never raises."""

    def __init__(self, client, provider: str = "azure", model: str = "",
                 max_tokens: int = DEFAULT_MAX_TOKENS):
        if provider not in PROVIDERS:
            raise ValueError(f"Unknown review provider: {provider}")
        self.client = client
        self.provider = provider
        self.model = model
        self.max_tokens = max_tokens
        self._lock = threading.Lock()
        self.requests = 0
        self.failures = 0
        self.input_tokens = 0
        self.output_tokens = 0

    def _record_usage(self, usage):
        if usage is None:
            return
        with self._lock:
            self.input_tokens += getattr(usage, "input_tokens", None) or getattr(usage, "prompt_tokens", 0) or 0
            self.output_tokens += getattr(usage, "output_tokens", None) or getattr(usage, "completion_tokens", 0) or 0

    def _record_failure(self):
        with self._lock:
            self.failures += 1

    def _complete(self, prompt: str) -> str:
        if self.provider == "anthropic":
            response = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
            self._record_usage(getattr(response, "usage", None))
            raw_text = ""
            for block in response.content:
                if hasattr(block, "text"):
                    raw_text += block.text
            return raw_text

        response = self.client.chat.completions.create(
            model=self.model,
            response_format={"type": "json_object"},
            messages=[{"role": "system", "content": prompt}],
        )
        self._record_usage(getattr(response, "usage", None))
        return (response.choices[0].message.content or "").strip() or "{}"

    def request_findings(self, prompt: str) -> list[ReviewFinding]:
        with self._lock:
            self.requests += 1
        try:
            raw_text = self._complete(prompt)
        except Exception as e:
            self._record_failure()
            print(f"  Warning: Completion request failed ({type(e).__name__}): {e}")
            return []

        try:
            return decode_review_response(raw_text)
        except ReviewDecodeError as e:
            self._record_failure()
            print(f"  Warning: Unusable model response ({e}): {raw_text.strip()[:200]}")
            return []

    def print_stats(self):
        print(f"Model requests: {self.requests} ({self.failures} failed)")
        print(f"Tokens — input: {self.input_tokens}, output: {self.output_tokens}")


class DryRunRequester:
    """Stands in for the model: logs prompt sizes, returns no findings."""

    def __init__(self):
        self.requests = 0
        self.estimated_tokens = 0

    def request_findings(self, prompt: str) -> list[ReviewFinding]:
        tokens = len(prompt) // 4
        self.requests += 1
        self.estimated_tokens += tokens
        print(f"    [DRY RUN] Would send prompt of ~{tokens} tokens")
        return []

    def print_stats(self):
        print(f"[DRY RUN] {self.requests} prompts, ~{self.estimated_tokens} tokens in total")


def build_requester(config: dict):
    """Create the requester for the configured provider.

    Falls back to a dry run when dry_run is set or no API key is available.
    """
    review = config.get("review", {})
    llm = config.get("llm", {})
    provider = review.get("provider", "azure")
    if provider not in PROVIDERS:
        raise ValueError(f"Unknown review provider: {provider} (expected one of {', '.join(PROVIDERS)})")

    api_key = llm.get("api_key", "")
    if provider == "anthropic" and not api_key:
        api_key = os.environ.get("ANTHROPIC_API_KEY", "")

    if review.get("dry_run") or not api_key:
        print("=== DRY RUN MODE (no API key set or dry-run enabled) ===")
        return DryRunRequester()

    max_tokens = int(review.get("max_tokens", DEFAULT_MAX_TOKENS))

    if provider == "anthropic":
        model = review.get("model") or DEFAULT_ANTHROPIC_MODEL
        client = anthropic.Anthropic(api_key=api_key)
        print(f"Provider: anthropic ({model})")
        return ReviewRequester(client, provider, model, max_tokens)

    endpoint = llm.get("endpoint", "")
    deployment = llm.get("deployment", "")
    if not endpoint or not deployment:
        raise ValueError("ENDPOINT and DEPLOYMENT are required for the azure provider")
    client = AzureOpenAI(
        azure_endpoint=endpoint,
        api_key=api_key,
        api_version=llm.get("api_version"),
        azure_deployment=deployment,
    )
    print(f"Provider: azure ({deployment})")
    return ReviewRequester(client, provider, deployment, max_tokens)
