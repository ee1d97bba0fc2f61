"""Put scripts/ on sys.path so tests can import the action's modules by name."""

import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "scripts"))

# Keep config_loader away from `git rev-parse` during tests
os.environ.setdefault("GITHUB_WORKSPACE", "/tmp/test-repo")
