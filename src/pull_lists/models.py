"""Request and row models shared by the pull pipeline."""

from __future__ import annotations

import json
import re
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


ZIP_PATTERN = re.compile(r"^\d{5}$")


class RunValidationError(ValueError):
    """Raised when an inbound run request is malformed.

    The message is returned verbatim to the caller as a 400 body.
    """


class RunRequest(BaseModel):
    """A validated pull request: one token and the ZIPs to pull, in order."""

    model_config = ConfigDict(populate_by_name=True)

    token: str
    zips: List[str]
    # Accepted for compatibility with the form payload; not acted on.
    tags: List[str] = Field(default_factory=list)
    import_to_high_level: bool = Field(False, alias="importToHighLevel")


class Phone(BaseModel):
    number: str
    type: str = ""


class HomeownerRow(BaseModel):
    """One exported record: the selected homeowner contact of a property."""

    first_name: str = ""
    last_name: str = ""
    property_address: str = ""
    # Street portion of the address (before the first comma); CSV column "addy_two".
    street_address: str = ""
    mobile: str
    phones: List[Phone] = Field(default_factory=list)
    emails: List[str] = Field(default_factory=list)


def filter_zip_codes(values: List[Any]) -> List[str]:
    """Stringify and trim each entry, keeping only 5-digit ZIPs in order."""
    zips: List[str] = []
    for value in values:
        if value is None:
            continue
        candidate = str(value).strip()
        if ZIP_PATTERN.match(candidate):
            zips.append(candidate)
    return zips


def parse_run_request(payload: Union[bytes, str, dict, None]) -> RunRequest:
    """Validate a raw request body into a RunRequest.

    Invalid ZIP entries are dropped silently; the request is rejected only
    when nothing usable remains.

    Raises:
        RunValidationError with a caller-facing message
    """
    data: Any = payload
    if isinstance(payload, (bytes, str)):
        try:
            data = json.loads(payload)
        except (ValueError, UnicodeDecodeError):
            raise RunValidationError("Invalid JSON body")

    if not isinstance(data, dict):
        raise RunValidationError("Missing token or zips[]")

    token = data.get("token")
    raw_zips = data.get("zips")
    if not isinstance(token, str) or not isinstance(raw_zips, list):
        raise RunValidationError("Missing token or zips[]")

    token = token.strip()
    zips = filter_zip_codes(raw_zips)

    if not token:
        raise RunValidationError("Empty token")
    if not zips:
        raise RunValidationError("No valid zips provided")

    raw_tags = data.get("tags")
    tags: List[str] = []
    if isinstance(raw_tags, list):
        tags = [str(t) for t in raw_tags if t is not None]

    return RunRequest(
        token=token,
        zips=zips,
        tags=tags,
        import_to_high_level=bool(data.get("importToHighLevel") or False),
    )


def describe_request(request: RunRequest, token_chars: Optional[int] = 4) -> str:
    """Log-safe summary of a request (token is masked)."""
    masked = "***"
    if token_chars and len(request.token) > token_chars * 2:
        masked = f"{request.token[:token_chars]}***"
    return f"token={masked} zips={','.join(request.zips)}"
