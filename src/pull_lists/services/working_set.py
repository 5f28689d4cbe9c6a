"""Handle for the single mutable lead set behind one account token.

DealMachine keeps one working set per account: builds add to it and the
bulk delete empties it. Everything the pipeline does goes through this
handle so the shared resource is explicit at each call site.
"""

from __future__ import annotations

from types import ModuleType
from typing import Any, Dict, Optional

from pull_lists.services import dealmachine_client


class LeadWorkingSet:
    """Binds an account token to the DealMachine operations.

    Not safe for concurrent builds or deletes: callers run regions one
    after another. Concurrent ``fetch_page`` reads are fine.
    """

    def __init__(self, token: str, client: Optional[ModuleType] = None):
        self.token = token
        self._client = client or dealmachine_client

    def count(self) -> int:
        return self._client.get_total_lead_count(self.token)

    def build(self, zip_code: str) -> int:
        return self._client.build_list_for_zip(self.token, zip_code)

    def fetch_page(self, begin: int, limit: int = 100) -> Dict[str, Any]:
        return self._client.fetch_leads_page(self.token, begin, limit)

    def delete_all(self, current_count: int) -> Dict[str, Any]:
        return self._client.delete_all_leads(self.token, current_count)

    def __repr__(self) -> str:
        return f"LeadWorkingSet(token={self.token[:4]}***)"
