import json
import logging
from typing import Any, Dict, Optional

import requests

from pull_lists.config.settings import get_settings


logger = logging.getLogger(__name__)


class ExternalServiceError(Exception):
    """Non-success or error-flagged response from the DealMachine API."""

    def __init__(self, endpoint: str, status: Optional[int], body_excerpt: str, reason: str = ""):
        self.endpoint = endpoint
        self.status = status
        self.body_excerpt = body_excerpt
        self.reason = reason
        status_txt = f"HTTP {status}" if status is not None else "no response"
        detail = f"{reason}: " if reason else ""
        super().__init__(f"{detail}{status_txt} at {endpoint} :: {body_excerpt}")


JSON_HEADERS: Dict[str, str] = {
    "accept": "application/json",
    "content-type": "application/json",
}

LEADS_PATH = "leads/"
LIST_BUILDER_PATH = "list-builder/"
BULK_UPDATE_PATH = "bulk-update-leads/"


def _base_url() -> str:
    return get_settings().api_base_url.rstrip("/")


def _excerpt(text: Any) -> str:
    if not isinstance(text, str):
        try:
            text = json.dumps(text, default=str)
        except (TypeError, ValueError):
            text = str(text)
    limit = get_settings().body_excerpt_chars
    if limit and len(text) > limit:
        return text[:limit] + "..."
    return text


def _post(path: str, json_body: Dict[str, Any]) -> Dict[str, Any]:
    """POST a JSON body and return the decoded JSON object.

    Raises:
        ExternalServiceError on transport failure, non-2xx status or a
        body that is not a JSON object
    """
    url = f"{_base_url()}/{path.lstrip('/')}"
    timeout = get_settings().http_timeout_seconds
    try:
        r = requests.post(url, headers=JSON_HEADERS, json=json_body, timeout=timeout)
    except requests.RequestException as e:
        raise ExternalServiceError(url, None, str(e), reason="request failed")

    logger.debug("POST %s -> %s", url, r.status_code)
    if not r.ok:
        raise ExternalServiceError(url, r.status_code, _excerpt(r.text or ""))
    try:
        data = r.json()
    except ValueError:
        raise ExternalServiceError(url, r.status_code, _excerpt(r.text or ""), reason="invalid JSON")
    if not isinstance(data, dict):
        raise ExternalServiceError(url, r.status_code, _excerpt(data), reason="unexpected response shape")
    return data


def _check_error(url_path: str, data: Dict[str, Any], reason: str) -> None:
    if data.get("error"):
        raise ExternalServiceError(f"{_base_url()}/{url_path}", 200, _excerpt(data), reason=reason)


def _results(url_path: str, data: Dict[str, Any], reason: str) -> Dict[str, Any]:
    results = data.get("results")
    if not isinstance(results, dict):
        raise ExternalServiceError(f"{_base_url()}/{url_path}", 200, _excerpt(data), reason=reason)
    return results


def _as_count(value: Any) -> Optional[int]:
    # bool is an int subclass; a True count is a malformed payload.
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdecimal():
        return int(value.strip())
    return None


# --- Operations ---


def get_total_lead_count(token: str) -> int:
    """Return the account's current lead total (always a live read)."""

    body = {
        "token": token,
        "type": "count",
        "search": "",
        "search_type": "address",
        "filters": None,
        "old_filters": None,
        "list_id": "all_leads",
        "property_flags": "",
        "property_flags_and_or": "or",
        "get_updated_data": False,
        "list_history_id": None,
    }
    data = _post(LEADS_PATH, body)
    _check_error(LEADS_PATH, data, "count error")
    if not data.get("valid"):
        raise ExternalServiceError(f"{_base_url()}/{LEADS_PATH}", 200, _excerpt(data), reason="count invalid")
    results = _results(LEADS_PATH, data, "count missing results")
    count = _as_count(results.get("total_lead_count"))
    if count is None or count < 0:
        raise ExternalServiceError(
            f"{_base_url()}/{LEADS_PATH}", 200, _excerpt(data), reason="count missing total_lead_count"
        )
    return count


def build_list_for_zip(token: str, zip_code: str) -> int:
    """Start a list build for one ZIP and return the expected lead count."""

    search_locations = json.dumps([{"type": "zip", "value": str(zip_code)}], separators=(",", ":"))
    body = {
        "token": token,
        "title": "My List",
        "type": "build_list_v2",
        "using_new_filters": 1,
        "list_type": "build_list",
        "list_area_type": "zip",
        "list_area": None,
        "list_area_2": None,
        "list_geo_fence": None,
        "list_filters": None,
        "estimated_count": None,
        "property_flags": "",
        "property_types": "",
        "property_flags_and_or": "or",
        "value_range_min": "",
        "value_range_max": "",
        "price_type": "estimated_value",
        "beds_min": None,
        "baths_min": None,
        "use_beds_exact": False,
        "search_locations": search_locations,
        "prompt": None,
        "variance": None,
        "attached_property_ids": None,
        "use_vision": False,
    }
    data = _post(LIST_BUILDER_PATH, body)
    _check_error(LIST_BUILDER_PATH, data, f"list builder error for ZIP {zip_code}")

    results = _results(LIST_BUILDER_PATH, data, f"no results for ZIP {zip_code}")
    raw = results.get("build_count")
    if raw is None:
        raw = results.get("estimated_count")
    target = _as_count(raw)
    if target is None or target < 0:
        raise ExternalServiceError(
            f"{_base_url()}/{LIST_BUILDER_PATH}",
            200,
            _excerpt(data),
            reason=f"no build_count/estimated_count for ZIP {zip_code}",
        )
    return target


def fetch_leads_page(token: str, begin: int = 0, limit: int = 100) -> Dict[str, Any]:
    """Return one raw page of leads starting at offset ``begin``."""

    body = {
        "token": token,
        "sort_by": "date_created_desc",
        "limit": limit,
        "begin": begin,
        "search": "",
        "search_type": "phone",
        "filters": None,
        "old_filters": None,
        "list_id": "all_leads",
        "property_flags": "",
        "property_flags_and_or": "or",
        "get_updated_data": False,
        "list_history_id": None,
    }
    data = _post(LEADS_PATH, body)
    _check_error(LEADS_PATH, data, f"page error at begin={begin}")
    return data


def delete_all_leads(token: str, current_count: int) -> Dict[str, Any]:
    """Permanently delete every lead; ``current_count`` must match the live total."""

    body = {
        "token": token,
        "type": "permanently_delete",
        "select_all": 1,
        "total_count": current_count if isinstance(current_count, int) else 0,
        "lead_ids": "",
        "new_list_name": None,
        "new_tag_name": None,
        "accept_new_owner": 0,
        "list_history_id": "",
        "list_id": "all_leads",
        "search": "",
        "search_type": "address",
        "property_flags": "",
        "property_flags_and_or": "or",
        "filters": None,
    }
    data = _post(BULK_UPDATE_PATH, body)
    _check_error(BULK_UPDATE_PATH, data, "bulk delete error")
    return data
