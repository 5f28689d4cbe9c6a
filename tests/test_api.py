"""Tests for the streaming pull-lists endpoint and request validation."""

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for p in (SRC, ROOT):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))

import pytest
from fastapi.testclient import TestClient

from pull_lists import api
from pull_lists.models import RunValidationError, parse_run_request
from pull_lists.services.stream import CsvEvent, PhaseEvent, PlainLine, decode_line
from pull_lists.services.working_set import LeadWorkingSet
from fakes import FakeWorkingSet, make_page, make_property


@pytest.fixture
def client():
    yield TestClient(api.app)
    api.app.dependency_overrides.clear()


def _use_factory(factory):
    api.app.dependency_overrides[api.get_working_set_factory] = lambda: factory


def test_parse_run_request_filters_zips_silently():
    req = parse_run_request(
        {"token": "  abc  ", "zips": ["90210", " 10001 ", "1234", "ABCDE", 30301, None, "902101"], "tags": ["a"]}
    )
    assert req.token == "abc"
    assert req.zips == ["90210", "10001", "30301"]
    assert req.tags == ["a"]
    assert req.import_to_high_level is False


@pytest.mark.parametrize(
    "body,message",
    [
        (b"{not json", "Invalid JSON body"),
        (b"[]", "Missing token or zips[]"),
        (b'{"zips": ["90210"]}', "Missing token or zips[]"),
        (b'{"token": "t", "zips": "90210"}', "Missing token or zips[]"),
        (b'{"token": "   ", "zips": ["90210"]}', "Empty token"),
        (b'{"token": "t", "zips": []}', "No valid zips provided"),
        (b'{"token": "t", "zips": ["9021", "x"]}', "No valid zips provided"),
    ],
)
def test_parse_run_request_rejections(body, message):
    with pytest.raises(RunValidationError) as exc:
        parse_run_request(body)
    assert str(exc.value) == message


def test_get_describes_endpoint(client):
    r = client.get("/api/pull-lists/run")
    assert r.status_code == 200
    assert r.text == "OK /api/pull-lists/run (POST expected)"


@pytest.mark.parametrize(
    "payload,message",
    [
        ({"zips": ["90210"]}, "Missing token or zips[]"),
        ({"token": "", "zips": ["90210"]}, "Empty token"),
        ({"token": "t", "zips": ["bad"]}, "No valid zips provided"),
    ],
)
def test_post_rejects_invalid_requests_before_streaming(client, payload, message):
    created = []
    _use_factory(lambda token: created.append(token))
    r = client.post("/api/pull-lists/run", json=payload)
    assert r.status_code == 400
    assert r.text == message
    assert created == []


def test_post_streams_run_to_completion(client):
    ws = FakeWorkingSet(
        targets={"90210": 2},
        pages={
            "90210": {
                0: make_page(
                    make_property(
                        "1 Palm Dr, Beverly Hills, CA",
                        [{"full_name": "DANA ROSS", "is_owner": True, "phone_1": "3105550111", "phone_1_type": "W"}],
                    ),
                    make_property(
                        "2 Palm Dr, Beverly Hills, CA",
                        [{"full_name": "Eli Ng", "phone_1": "3105550112", "phone_1_type": "L"}],
                    ),
                )
            }
        },
    )
    tokens = []

    def factory(token):
        tokens.append(token)
        return ws

    _use_factory(factory)

    r = client.post("/api/pull-lists/run", json={"token": " t ", "zips": ["90210", "oops"], "importToHighLevel": True})

    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/plain")
    assert r.headers["cache-control"] == "no-cache, no-transform"
    assert tokens == ["t"]

    events = [decode_line(line) for line in r.text.splitlines()]
    assert isinstance(events[0], PhaseEvent)
    csv_events = [e for e in events if isinstance(e, CsvEvent)]
    assert [e.zip for e in csv_events] == ["90210"]
    lines = csv_events[0].csv_text().splitlines()
    assert len(lines) == 2
    assert lines[1].startswith("Dana,ROSS,")
    assert events[-1] == PlainLine(text="Done.")


def test_post_stream_ends_with_error_line_on_failure(client):
    class Failing(FakeWorkingSet):
        def count(self):
            raise RuntimeError("account locked")

    _use_factory(lambda token: Failing())

    r = client.post("/api/pull-lists/run", json={"token": "t", "zips": ["90210"]})

    assert r.status_code == 200
    assert r.text.splitlines()[-1] == "ERROR: account locked"


def test_default_factory_binds_token_to_working_set():
    factory = api.get_working_set_factory()
    ws = factory("tok")
    assert isinstance(ws, LeadWorkingSet)
    assert ws.token == "tok"
