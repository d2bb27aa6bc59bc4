"""
Pytest fixtures.

Provides:
- isolated_files: per-test storage and user files
- fake_ai: stand-in OpenAI client that records requests and replays canned replies
- client: Flask test client
"""
import json
from types import SimpleNamespace

import pytest

from jackometer import storage, helpers, gateway


@pytest.fixture(autouse=True)
def isolated_files(tmp_path, monkeypatch):
    monkeypatch.setattr(storage, "DB", str(tmp_path / "data.json"))
    monkeypatch.setattr(helpers, "USERS_FILE", str(tmp_path / "users.json"))
    return tmp_path


class FakeCompletions:
    def __init__(self):
        self.calls = []
        self.replies = []
        self.responder = None

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.responder:
            reply = self.responder(kwargs)
        else:
            reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, Exception):
            raise reply
        if not isinstance(reply, str):
            reply = json.dumps(reply)
        message = SimpleNamespace(content=reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeImages:
    def __init__(self):
        self.calls = []
        self.result = "UE5HREFUQQ=="

    def edit(self, **kwargs):
        self.calls.append(kwargs)
        items = [SimpleNamespace(b64_json=self.result)] if self.result else []
        return SimpleNamespace(data=items)


class FakeClient:
    def __init__(self):
        self.completions = FakeCompletions()
        self.chat = SimpleNamespace(completions=self.completions)
        self.images = FakeImages()

    def reply(self, *replies):
        """Queue replies for the next chat completions, in order."""
        self.completions.replies.extend(replies)

    @property
    def calls(self):
        return self.completions.calls


@pytest.fixture(autouse=True)
def fake_ai(monkeypatch):
    fake = FakeClient()
    monkeypatch.setattr(gateway, "get_client", lambda: fake)
    return fake


@pytest.fixture
def client():
    from jackometer.app import app, _compressed
    _compressed.clear()
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c


@pytest.fixture
def headers():
    return {"Username": "ada@uni.edu"}
