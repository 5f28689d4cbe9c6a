"""Tests for the DealMachine HTTP adapter."""

import json
import sys
from pathlib import Path
from unittest.mock import Mock, patch

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for p in (SRC, ROOT):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))

import pytest
import requests
from pull_lists.services import dealmachine_client as dm
from pull_lists.services.dealmachine_client import ExternalServiceError


def _response(payload=None, status=200, text=None):
    r = Mock()
    r.status_code = status
    r.ok = 200 <= status < 300
    r.text = text if text is not None else json.dumps(payload)
    if isinstance(payload, Exception):
        r.json = Mock(side_effect=payload)
    else:
        r.json = Mock(return_value=payload)
    return r


POST = "pull_lists.services.dealmachine_client.requests.post"


def test_count_returns_total_and_sends_fixed_body():
    with patch(POST, return_value=_response({"valid": True, "results": {"total_lead_count": 42}})) as post:
        assert dm.get_total_lead_count("tok") == 42

    args, kwargs = post.call_args
    assert args[0].endswith("/v2/leads/")
    assert kwargs["json"]["token"] == "tok"
    assert kwargs["json"]["type"] == "count"
    assert kwargs["json"]["list_id"] == "all_leads"
    assert kwargs["headers"]["content-type"] == "application/json"


@pytest.mark.parametrize(
    "payload",
    [
        {"valid": False, "results": {"total_lead_count": 3}},
        {"valid": True, "error": "bad token", "results": {"total_lead_count": 3}},
        {"valid": True, "results": {}},
        {"valid": True, "results": {"total_lead_count": "many"}},
        {"valid": True, "results": {"total_lead_count": True}},
        {"valid": True},
        {"valid": True, "results": [1]},
        {"valid": True, "results": "none"},
        {"valid": True, "results": {"total_lead_count": "\u00b2"}},
        {"valid": True, "results": {"total_lead_count": "-4"}},
    ],
)
def test_count_rejects_invalid_payloads(payload):
    with patch(POST, return_value=_response(payload)):
        with pytest.raises(ExternalServiceError) as exc:
            dm.get_total_lead_count("tok")
    assert exc.value.endpoint.endswith("/leads/")
    assert exc.value.status == 200


def test_non_success_status_carries_endpoint_status_and_excerpt():
    with patch(POST, return_value=_response(None, status=503, text="upstream down")):
        with pytest.raises(ExternalServiceError) as exc:
            dm.get_total_lead_count("tok")
    assert exc.value.status == 503
    assert exc.value.body_excerpt == "upstream down"
    assert "HTTP 503" in str(exc.value)


def test_body_excerpt_is_truncated():
    with patch(POST, return_value=_response(None, status=500, text="x" * 5000)):
        with pytest.raises(ExternalServiceError) as exc:
            dm.get_total_lead_count("tok")
    assert len(exc.value.body_excerpt) < 600


def test_invalid_json_body_fails():
    with patch(POST, return_value=_response(ValueError("no json"), text="<html>")):
        with pytest.raises(ExternalServiceError, match="invalid JSON"):
            dm.fetch_leads_page("tok", 0)


def test_transport_error_is_wrapped():
    with patch(POST, side_effect=requests.ConnectionError("reset")):
        with pytest.raises(ExternalServiceError) as exc:
            dm.delete_all_leads("tok", 5)
    assert exc.value.status is None


def test_build_prefers_build_count_then_estimated_count():
    with patch(POST, return_value=_response({"results": {"build_count": 120, "estimated_count": 99}})) as post:
        assert dm.build_list_for_zip("tok", "90210") == 120
    body = post.call_args.kwargs["json"]
    assert post.call_args.args[0].endswith("/v2/list-builder/")
    assert body["type"] == "build_list_v2"
    assert json.loads(body["search_locations"]) == [{"type": "zip", "value": "90210"}]

    with patch(POST, return_value=_response({"results": {"estimated_count": 99}})):
        assert dm.build_list_for_zip("tok", "90210") == 99


def test_build_without_count_or_with_error_fails():
    with patch(POST, return_value=_response({"results": {}})):
        with pytest.raises(ExternalServiceError, match="90210"):
            dm.build_list_for_zip("tok", "90210")
    with patch(POST, return_value=_response({"error": "quota"})):
        with pytest.raises(ExternalServiceError, match="90210"):
            dm.build_list_for_zip("tok", "90210")


def test_fetch_page_sends_offset_and_returns_raw():
    page = {"results": {"properties": [{"property_address_full": "1 A St"}]}}
    with patch(POST, return_value=_response(page)) as post:
        assert dm.fetch_leads_page("tok", 300, 100) == page
    body = post.call_args.kwargs["json"]
    assert body["begin"] == 300
    assert body["limit"] == 100
    assert body["sort_by"] == "date_created_desc"


def test_fetch_page_error_marker_fails():
    with patch(POST, return_value=_response({"error": "expired"})):
        with pytest.raises(ExternalServiceError):
            dm.fetch_leads_page("tok", 0)


def test_delete_sends_exact_count():
    with patch(POST, return_value=_response({"results": {}})) as post:
        dm.delete_all_leads("tok", 17)
    assert post.call_args.args[0].endswith("/v2/bulk-update-leads/")
    body = post.call_args.kwargs["json"]
    assert body["type"] == "permanently_delete"
    assert body["select_all"] == 1
    assert body["total_count"] == 17


def test_non_object_body_fails():
    with patch(POST, return_value=_response([1, 2, 3])):
        with pytest.raises(ExternalServiceError, match="unexpected response shape"):
            dm.delete_all_leads("tok", 1)


def test_count_accepts_numeric_string():
    with patch(POST, return_value=_response({"valid": True, "results": {"total_lead_count": " 12 "}})):
        assert dm.get_total_lead_count("tok") == 12


@pytest.mark.parametrize(
    "payload",
    [
        {"results": "oops"},
        {"results": [{"build_count": 5}]},
        {"results": {"build_count": "\u00b2"}},
        {"results": {"build_count": -3}},
    ],
)
def test_build_with_malformed_results_fails(payload):
    with patch(POST, return_value=_response(payload)):
        with pytest.raises(ExternalServiceError, match="90210") as exc:
            dm.build_list_for_zip("tok", "90210")
    assert exc.value.endpoint.endswith("/list-builder/")
    assert exc.value.status == 200
