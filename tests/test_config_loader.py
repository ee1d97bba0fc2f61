"""Tests for config_loader.py — defaults, project config and input overrides."""

import pytest

INPUT_NAMES = [
    "GITHUB_TOKEN", "ENDPOINT", "API_KEY", "API_VERSION", "DEPLOYMENT", "EXCLUDE", "exclude",
    "AZURE_OPENAI_ENDPOINT", "AZURE_OPENAI_API_KEY", "AZURE_OPENAI_API_VERSION", "AZURE_OPENAI_DEPLOYMENT",
]
AGENT_VARS = [
    "REVIEW_AGENT_PROVIDER", "REVIEW_AGENT_MODEL", "REVIEW_AGENT_MAX_TOKENS",
    "REVIEW_AGENT_MAX_WORKERS", "REVIEW_AGENT_DRY_RUN", "REVIEW_AGENT_CONFIG",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in INPUT_NAMES:
        monkeypatch.delenv(name, raising=False)
        monkeypatch.delenv("INPUT_" + name.upper(), raising=False)
    for name in AGENT_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("REVIEW_AGENT_ACTION_PATH", raising=False)
    monkeypatch.setenv("GITHUB_WORKSPACE", str(tmp_path))
    return tmp_path


class TestDeepMerge:
    @pytest.fixture(autouse=True)
    def _import(self):
        import importlib
        self.mod = importlib.import_module("config_loader")

    def test_nested_override(self):
        base = {"review": {"provider": "azure", "max_workers": 1}, "files": {"exclude": []}}
        merged = self.mod._deep_merge(base, {"review": {"max_workers": 4}})
        assert merged["review"] == {"provider": "azure", "max_workers": 4}
        assert base["review"]["max_workers"] == 1


class TestParseExcludePatterns:
    @pytest.fixture(autouse=True)
    def _import(self):
        import importlib
        self.mod = importlib.import_module("config_loader")

    def test_comma_separated(self):
        assert self.mod.parse_exclude_patterns(" *.md, dist/* ,,") == ["*.md", "dist/*"]

    def test_empty(self):
        assert self.mod.parse_exclude_patterns("") == []
        assert self.mod.parse_exclude_patterns(None) == []

    def test_list_passes_through(self):
        assert self.mod.parse_exclude_patterns(["*.lock ", ""]) == ["*.lock"]


class TestLoadConfig:
    @pytest.fixture(autouse=True)
    def _import(self, clean_env):
        import importlib
        self.mod = importlib.import_module("config_loader")
        self.repo = clean_env

    def test_defaults(self):
        config = self.mod.load_config()
        assert config["review"]["provider"] == "azure"
        assert config["review"]["max_workers"] == 1
        assert config["llm"]["api_version"] == "2024-10-21"
        assert config["files"]["exclude"] == []

    def test_project_config_overrides_defaults(self):
        config_dir = self.repo / ".github" / "review-agent"
        config_dir.mkdir(parents=True)
        (config_dir / "config.yaml").write_text(
            "review:\n  max_workers: 3\nfiles:\n  exclude:\n    - '*.lock'\n"
        )
        config = self.mod.load_config()
        assert config["review"]["max_workers"] == 3
        assert config["review"]["provider"] == "azure"
        assert config["files"]["exclude"] == ["*.lock"]

    def test_action_inputs(self, monkeypatch):
        monkeypatch.setenv("INPUT_GITHUB_TOKEN", "ghs_x")
        monkeypatch.setenv("INPUT_ENDPOINT", "https://example.openai.azure.com")
        monkeypatch.setenv("INPUT_API_KEY", "secret")
        monkeypatch.setenv("INPUT_DEPLOYMENT", "gpt-4o")
        monkeypatch.setenv("INPUT_EXCLUDE", "**/*.json, docs/*")
        config = self.mod.load_config()
        assert config["github"]["token"] == "ghs_x"
        assert config["llm"]["endpoint"] == "https://example.openai.azure.com"
        assert config["llm"]["api_key"] == "secret"
        assert config["llm"]["deployment"] == "gpt-4o"
        assert config["llm"]["api_version"] == "2024-10-21"
        assert config["files"]["exclude"] == ["**/*.json", "docs/*"]

    def test_input_exclude_replaces_project_exclude(self, monkeypatch):
        config_dir = self.repo / ".github" / "review-agent"
        config_dir.mkdir(parents=True)
        (config_dir / "config.yaml").write_text("files:\n  exclude: ['*.lock']\n")
        monkeypatch.setenv("INPUT_EXCLUDE", "*.md")
        assert self.mod.load_config()["files"]["exclude"] == ["*.md"]

    def test_plain_env_fallback(self, monkeypatch):
        monkeypatch.setenv("AZURE_OPENAI_ENDPOINT", "https://fallback")
        monkeypatch.setenv("API_VERSION", "2025-01-01")
        config = self.mod.load_config()
        assert config["llm"]["endpoint"] == "https://fallback"
        assert config["llm"]["api_version"] == "2025-01-01"

    def test_review_agent_overrides(self, monkeypatch):
        monkeypatch.setenv("REVIEW_AGENT_PROVIDER", "Anthropic")
        monkeypatch.setenv("REVIEW_AGENT_MAX_WORKERS", "4")
        monkeypatch.setenv("REVIEW_AGENT_DRY_RUN", "true")
        config = self.mod.load_config()
        assert config["review"]["provider"] == "anthropic"
        assert config["review"]["max_workers"] == 4
        assert config["review"]["dry_run"] is True
