import sys
from dataclasses import replace

import pytest


# Ensure project root is importable (so `import main` works reliably across environments)
import os as _os
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from apphost import db  # noqa: E402
from apphost import settings as settings_module  # noqa: E402
from apphost.settings import Settings  # noqa: E402


@pytest.fixture(autouse=True)
def isolated_db(tmp_path, monkeypatch):
    """Point the event log at a fresh sqlite file for every test."""
    monkeypatch.setattr(settings_module, "settings", replace(settings_module.settings, db_path=str(tmp_path / "events.db")))
    db.init_db()
    return tmp_path


@pytest.fixture
def codespace_settings(tmp_path):
    return Settings(
        db_path=str(tmp_path / "events.db"),
        simulated_startup_delay_s=0.05,
        health_poll_interval_s=0,
        codespaces=True,
        codespace_name="fuzzy-octo-spoon",
        port_forwarding_domain="app.github.dev",
    )
