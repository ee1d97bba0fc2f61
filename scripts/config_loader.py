"""
config_loader.py — Load and merge the reviewer configuration.

Configuration is resolved in this order (later overrides earlier):
1. Built-in defaults (defaults/config.yaml in the action repo)
2. Project config (.github/review-agent/config.yaml in the consuming repo)
3. Action inputs / environment variable overrides

Action inputs arrive as INPUT_<NAME> variables (that is how GitHub passes
`with:` values to an action); a plain <NAME> variable is accepted too so the
script can be run outside of Actions.
"""

import os
import subprocess
from pathlib import Path

import yaml

# (config section, key, input names tried in order)
LLM_INPUTS = [
    ("endpoint", ["ENDPOINT", "AZURE_OPENAI_ENDPOINT"]),
    ("api_key", ["API_KEY", "AZURE_OPENAI_API_KEY"]),
    ("api_version", ["API_VERSION", "AZURE_OPENAI_API_VERSION"]),
    ("deployment", ["DEPLOYMENT", "AZURE_OPENAI_DEPLOYMENT"]),
]


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base. Override wins for leaf values."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def get_input(name: str) -> str:
    """Read an action input, falling back to a plain environment variable."""
    input_var = "INPUT_" + name.replace(" ", "_").upper()
    value = os.environ.get(input_var)
    if value is None:
        value = os.environ.get(name, "")
    return value.strip()


def parse_exclude_patterns(raw) -> list[str]:
    """Split a comma-separated pattern list. Lists pass through trimmed."""
    if not raw:
        return []
    if isinstance(raw, str):
        raw = raw.split(",")
    return [p.strip() for p in raw if p and p.strip()]


def load_config() -> dict:
    """Load configuration from defaults + project config + env overrides.

    Environment variables:
        REVIEW_AGENT_CONFIG: Path to project config (relative to repo root)
        REVIEW_AGENT_ACTION_PATH: Path to the action's own directory
    """
    # 1. Load built-in defaults from the action repo
    action_path = Path(os.environ.get("REVIEW_AGENT_ACTION_PATH", Path(__file__).parent.parent))
    defaults_path = action_path / "defaults" / "config.yaml"

    config = {}
    if defaults_path.exists():
        config = yaml.safe_load(defaults_path.read_text(encoding="utf-8")) or {}

    # 2. Load project-specific config from the consuming repo
    repo_root = _find_repo_root()
    config_rel_path = os.environ.get("REVIEW_AGENT_CONFIG", ".github/review-agent/config.yaml")
    project_config_path = repo_root / config_rel_path

    if project_config_path.exists():
        project_config = yaml.safe_load(project_config_path.read_text(encoding="utf-8")) or {}
        config = _deep_merge(config, project_config)
        print(f"  Loaded project config from {config_rel_path}")
    else:
        print(f"  No project config at {config_rel_path} — using defaults")

    # 3. Apply input / environment variable overrides
    return apply_env_overrides(config)


def apply_env_overrides(config: dict) -> dict:
    config = _deep_merge({}, config)

    token = get_input("GITHUB_TOKEN")
    if token:
        config.setdefault("github", {})["token"] = token

    llm = config.setdefault("llm", {})
    for key, names in LLM_INPUTS:
        for name in names:
            value = get_input(name)
            if value:
                llm[key] = value
                break

    files = config.setdefault("files", {})
    files["exclude"] = parse_exclude_patterns(files.get("exclude"))
    exclude = get_input("exclude")
    if exclude:
        files["exclude"] = parse_exclude_patterns(exclude)

    review = config.setdefault("review", {})
    if os.environ.get("REVIEW_AGENT_PROVIDER"):
        review["provider"] = os.environ["REVIEW_AGENT_PROVIDER"].lower()
    if os.environ.get("REVIEW_AGENT_MODEL"):
        review["model"] = os.environ["REVIEW_AGENT_MODEL"]
    if os.environ.get("REVIEW_AGENT_MAX_TOKENS"):
        review["max_tokens"] = int(os.environ["REVIEW_AGENT_MAX_TOKENS"])
    if os.environ.get("REVIEW_AGENT_MAX_WORKERS"):
        review["max_workers"] = int(os.environ["REVIEW_AGENT_MAX_WORKERS"])
    if os.environ.get("REVIEW_AGENT_DRY_RUN"):
        review["dry_run"] = os.environ["REVIEW_AGENT_DRY_RUN"].lower() == "true"

    return config


def _find_repo_root() -> Path:
    """Find the Git repository root."""
    # In GitHub Actions, GITHUB_WORKSPACE is the repo root
    workspace = os.environ.get("GITHUB_WORKSPACE")
    if workspace:
        return Path(workspace)

    # Fall back to git rev-parse
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--show-toplevel"],
            capture_output=True, text=True, timeout=5,
        )
        if result.returncode == 0:
            return Path(result.stdout.strip())
    except (OSError, subprocess.SubprocessError):
        pass

    # Last resort: current directory
    return Path.cwd()
