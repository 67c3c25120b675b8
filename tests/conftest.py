from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = ROOT / "src"
for entry in (SRC_ROOT, ROOT):
    if str(entry) not in sys.path:
        sys.path.insert(0, str(entry))

import pytest  # noqa: E402

from cwutils import config  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_run_defaults(monkeypatch, tmp_path) -> None:
    """Prevent local cwutils configs from bleeding into tests."""
    monkeypatch.setenv(config.ENV_CONFIG, str(tmp_path / "missing_config.json"))


@pytest.fixture(autouse=True)
def _restore_root_logging():
    """Undo handler changes made by CLI runs."""
    import logging

    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
