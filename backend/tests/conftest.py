import os
import sys

import pytest

# Tests import `backend.*`, which requires the repo root on sys.path when pytest runs from `backend/`.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)


@pytest.fixture(autouse=True)
def _pinned_pricing(monkeypatch):
    # Keep tax/GST defaults stable no matter what KNOX_* env the test runner has.
    from backend.app.config import settings

    monkeypatch.setattr(settings, "pos_tax_rate", 12.0)
    monkeypatch.setattr(settings, "gst_rate", 0.08)
    for name in ("KNOX_REMOTE_BACKEND", "KNOX_REMOTE_URL", "KNOX_POS_TAX_RATE", "KNOX_GST_RATE"):
        monkeypatch.delenv(name, raising=False)
