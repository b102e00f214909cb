from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

import settings
import storage
import tutor
from app import app


class FakeOpenAI:
    """Records every call and answers from queued replies."""

    def __init__(self):
        self.transcript = "I goes to school yesterday"
        self.chat_replies = []
        self.speech_bytes = b"ID3-fake-mp3"
        self.calls = []
        self.audio = SimpleNamespace(
            transcriptions=SimpleNamespace(create=self._transcribe),
            speech=SimpleNamespace(create=self._speak),
        )
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._chat))

    def _transcribe(self, **kwargs):
        self.calls.append(("transcribe", kwargs))
        return SimpleNamespace(text=self.transcript)

    def _speak(self, **kwargs):
        self.calls.append(("speech", kwargs))
        return SimpleNamespace(content=self.speech_bytes)

    def _chat(self, **kwargs):
        self.calls.append(("chat", kwargs))
        content = self.chat_replies.pop(0)
        if isinstance(content, Exception):
            raise content
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])

    def calls_of(self, kind):
        return [kwargs for name, kwargs in self.calls if name == kind]


class FakeBucket:
    def __init__(self, owner, name):
        self.owner = owner
        self.name = name

    def upload(self, path, contents, options):
        if self.owner.fail_upload:
            raise RuntimeError("bucket not found")
        self.owner.uploads.append((self.name, path, contents, options))

    def get_public_url(self, path):
        return f"https://cdn.test/{self.name}/{path}"


class FakeQuery:
    def __init__(self, owner, table):
        self.owner = owner
        self.table = table
        self.ops = []

    def insert(self, row):
        self.ops.append(("insert", row))
        return self

    def select(self, columns):
        self.ops.append(("select", columns))
        return self

    def order(self, column, desc=False):
        self.ops.append(("order", column, desc))
        return self

    def limit(self, count):
        self.ops.append(("limit", count))
        return self

    def execute(self):
        self.owner.queries.append((self.table, self.ops))
        if self.owner.fail_query:
            raise RuntimeError("relation does not exist")
        if self.ops and self.ops[0][0] == "insert":
            row = dict(self.ops[0][1], id="row-1", created_at="2026-10-18T10:00:00Z")
            return SimpleNamespace(data=[row])
        return SimpleNamespace(data=list(self.owner.rows))


class FakeSupabase:
    def __init__(self):
        self.uploads = []
        self.queries = []
        self.rows = []
        self.fail_upload = False
        self.fail_query = False
        self.storage = SimpleNamespace(from_=lambda bucket: FakeBucket(self, bucket))

    def table(self, name):
        return FakeQuery(self, name)


@pytest.fixture
def fake_openai(monkeypatch):
    fake = FakeOpenAI()
    monkeypatch.setattr(tutor, "_get_openai_client", lambda: fake)
    return fake


@pytest.fixture
def fake_supabase(monkeypatch):
    fake = FakeSupabase()
    monkeypatch.setattr(storage, "_supabase", fake)
    return fake


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(settings, "REQUIRE_AUTH", False)
    return TestClient(app)
