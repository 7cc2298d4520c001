import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)


@pytest.fixture(autouse=True)
def _fresh_singletons(monkeypatch):
    """Give every test its own store and relay; never reach the real gateway."""
    from src.chatrelay.infrastructure import chat_store
    from src.chatrelay.services import relay

    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    store = chat_store.InMemoryChatStore()
    monkeypatch.setattr(chat_store, "_store", store)
    monkeypatch.setattr(relay, "_relay", None)
    return store
