import logging

from fastapi.testclient import TestClient

from main import app
from storage import Storage


def test_unhandled_error_returns_500_and_logs_once(make_client, monkeypatch, caplog):
    make_client()

    def broken(self, *args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(Storage, "list_categories", broken)
    c = TestClient(app, raise_server_exceptions=False)
    with caplog.at_level(logging.DEBUG, logger="errors"):
        res = c.get("/api/categories")
    c.close()

    assert res.status_code == 500
    assert res.json() == {"detail": "Internal server error"}
    records = [r for r in caplog.records if r.name == "errors"]
    assert [r.levelno for r in records] == [logging.DEBUG]
