"""
Pytest fixtures for metric_node tests.
"""

# IMPORTANT: Path setup must be at the very top, before any other imports
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

# Now safe to import other modules
import pytest


@pytest.fixture
def temp_data_root(tmp_path, monkeypatch):
    """Isolated DATA_ROOT so the store and logs stay out of the repo."""
    data_root = tmp_path / "data_root"
    data_root.mkdir(parents=True)
    monkeypatch.setenv("DATA_ROOT", str(data_root))
    monkeypatch.delenv("METRIC_NODE_DB", raising=False)
    monkeypatch.delenv("METRIC_NODE_CONFIG", raising=False)
    yield data_root


@pytest.fixture
def store(temp_data_root):
    """Fresh TimeSeriesStore backed by a throwaway sqlite file."""
    from metric_node.store import TimeSeriesStore, reset_store

    reset_store()
    db = TimeSeriesStore(temp_data_root / "metrics.sqlite")
    db.ensure_database()

    yield db

    db.close()
    reset_store()


@pytest.fixture
def make_registry():
    """Factory building a SourceRegistry from raw config-style entries."""
    from metric_node.config import build_registry

    def _make(*entries):
        raw = []
        for entry in entries:
            entry = dict(entry)
            entry.setdefault("fetch", {"url": f"http://example.test/{entry['name']}"})
            raw.append(entry)
        return build_registry(raw)

    return _make


@pytest.fixture
def sources_yaml(temp_data_root):
    """Write a sources config file and return its path."""
    import yaml

    def _write(data: dict) -> Path:
        path = temp_data_root / "sources.yml"
        with open(path, "w") as f:
            yaml.dump(data, f)
        return path

    return _write
