from __future__ import annotations

import json

from core.models import TraktUser
from core.token_store import TokenStore


def test_set_persists_and_reloads(tmp_path):
    path = tmp_path / "tokens.json"
    store = TokenStore(path)
    store.set(TraktUser(linked_user_id="u1", access_token="a", refresh_token="r", expires_at=200.0))

    assert json.loads(path.read_text())["u1"]["access_token"] == "a"
    assert len(TokenStore(path)) == 1


def test_apply_prefers_newer_stored_token(tmp_path):
    path = tmp_path / "tokens.json"
    path.write_text(json.dumps({"u1": {"access_token": "stored", "refresh_token": "r2", "expires_at": 500}}))
    store = TokenStore(path)

    older = store.apply(TraktUser(linked_user_id="u1", access_token="export", expires_at=100))
    newer = store.apply(TraktUser(linked_user_id="u1", access_token="export", expires_at=900))
    other = store.apply(TraktUser(linked_user_id="u2", access_token="export"))

    assert older.access_token == "stored"
    assert older.refresh_token == "r2"
    assert newer.access_token == "export"
    assert other.access_token == "export"


def test_corrupt_file_is_ignored(tmp_path):
    path = tmp_path / "tokens.json"
    path.write_text("garbage")
    assert len(TokenStore(path)) == 0
