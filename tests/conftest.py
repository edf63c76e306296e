import json
from urllib.parse import parse_qs

import httpx
import pytest

from termsync.models import KeyUsage, LocalKey, RemoteTerm
from termsync.poeditor_client import PoeditorClient


def poeditor_ok(result=None):
    """A successful POEditor envelope."""
    return httpx.Response(200, json={
        "response": {"status": "success", "code": "200", "message": "OK"},
        "result": result or {},
    })


def poeditor_fail(message, code="4011", status_code=200):
    return httpx.Response(status_code, json={
        "response": {"status": "fail", "code": code, "message": message},
    })


class FakePoeditor:
    """
    In-memory stand-in for the POEditor v2 API, served through httpx.MockTransport.

    Queue responses in ``failures`` to have them returned (in order) before the
    normal handling; put term names in ``reject`` to make terms/add skip them.
    """

    def __init__(self):
        self.terms = []
        self.translations = {}
        self.requests = []
        self.failures = []
        self.reject = set()

    def add_remote_term(self, term, **fields):
        record = {"term": term, "context": "", "reference": "", "plural": "", "tags": [], "comment": "",
                  "created": "2024-01-01T00:00:00+0000", "updated": ""}
        record.update(fields)
        self.terms.append(record)

    def endpoints(self):
        return [endpoint for endpoint, _ in self.requests]

    def handler(self, request):
        form = {name: values[0] for name, values in parse_qs(request.content.decode("utf-8")).items()}
        endpoint = request.url.path.split("/v2", 1)[-1]
        self.requests.append((endpoint, form))
        if self.failures:
            return self.failures.pop(0)

        data = json.loads(form["data"]) if "data" in form else []
        names = {term["term"] for term in self.terms}

        if endpoint == "/terms/list":
            language = form.get("language")
            terms = []
            for term in self.terms:
                item = dict(term)
                if language:
                    item["translation"] = {"content": self.translations.get(language, {}).get(term["term"], "")}
                terms.append(item)
            return poeditor_ok({"terms": terms})

        if endpoint == "/terms/add":
            added = 0
            for item in data:
                if item["term"] in names or item["term"] in self.reject:
                    continue
                self.add_remote_term(item["term"], **{k: v for k, v in item.items() if k != "term"})
                added += 1
            return poeditor_ok({"terms": {"parsed": len(data), "added": added}})

        # Existing terms are addressed by (term, context), as POEditor does.
        if endpoint == "/terms/update":
            updated = 0
            for item in data:
                changes = {k: v for k, v in item.items() if k not in ("term", "context", "new_context")}
                if "new_context" in item:
                    changes["context"] = item["new_context"]
                for term in self.terms:
                    if (term["term"], term["context"]) == (item["term"], item.get("context", "")):
                        term.update(changes)
                        updated += 1
            return poeditor_ok({"terms": {"parsed": len(data), "updated": updated}})

        if endpoint == "/terms/delete":
            doomed = {(item["term"], item.get("context", "")) for item in data}
            before = len(self.terms)
            self.terms = [term for term in self.terms if (term["term"], term["context"]) not in doomed]
            return poeditor_ok({"terms": {"parsed": len(data), "deleted": before - len(self.terms)}})

        if endpoint == "/projects/list":
            return poeditor_ok({"projects": [{"id": 1, "name": "Demo", "public": 0, "open": 0}]})

        if endpoint == "/languages/list":
            return poeditor_ok({"languages": [
                {"name": "German", "code": "de", "translations": 1, "percentage": 50.0}
            ]})

        return httpx.Response(404, json={"response": {"status": "fail", "message": "Unknown endpoint"}})


class SleepRecorder:
    """Async replacement for asyncio.sleep that records instead of waiting."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def fake_poeditor():
    return FakePoeditor()


@pytest.fixture
def make_client(fake_poeditor):
    def _make(api_token="test-token"):
        return PoeditorClient(
            api_token=api_token,
            transport=httpx.MockTransport(fake_poeditor.handler),
        )
    return _make


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def make_key():
    def _make(key, paths=(), phrase="", framework="vue3", usage="$t", dynamic=False, examples=(), contexts=None):
        contexts = contexts or [""] * len(paths)
        return LocalKey(
            key=key,
            phrase=phrase,
            files=tuple(KeyUsage(path=path, line=i + 1, context=ctx)
                        for i, (path, ctx) in enumerate(zip(paths, contexts))),
            framework=framework,
            usage=usage,
            dynamic=dynamic,
            examples=tuple(examples),
        )
    return _make


@pytest.fixture
def matching_remote():
    """Build the RemoteTerm whose fields already equal what the diff engine derives for a key."""
    from termsync.diff_engine import build_add_term

    def _make(local_key, **overrides):
        term = build_add_term(local_key)
        fields = {
            "term": term.term, "context": term.context, "reference": term.reference,
            "tags": term.tags, "comment": term.comment,
        }
        fields.update(overrides)
        return RemoteTerm(**fields)
    return _make
