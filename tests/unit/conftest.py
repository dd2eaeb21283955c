"""
Pytest configuration for unit tests.

Keeps the entrypoint's environment variables from leaking in from the host
and provides small filesystem fixtures.
"""
import logging

import pytest

from indexer_entrypoint.config import ENV_FIELDS


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove every variable the entrypoint reads."""
    for name in list(ENV_FIELDS) + ["ENTRYPOINT_CONFIG"]:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture(autouse=True)
def entrypoint_caplog(caplog):
    """Capture INFO diagnostics from the package logger."""
    caplog.set_level(logging.INFO, logger="indexer_entrypoint")
    yield caplog
    # main() installs a stdout handler bound to this test's captured stream
    package_logger = logging.getLogger("indexer_entrypoint")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)


@pytest.fixture
def fake_tree():
    """Build a directory tree from a {relative_path: content} dict."""
    def build(root, files):
        root.mkdir(parents=True, exist_ok=True)
        for rel_path, content in files.items():
            path = root / rel_path
            if content is None:
                path.mkdir(parents=True, exist_ok=True)
            else:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(content)
        return root
    return build


@pytest.fixture
def list_tree():
    """Set of relative paths of every entry below a root."""
    def listing(root):
        return {str(p.relative_to(root)) for p in root.rglob('*')}
    return listing
