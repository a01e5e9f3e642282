"""Grafana HTTP API adapter.

Dashboards are discovered page by page through ``/api/search`` and then
fetched one at a time by UID.
"""

from __future__ import annotations

import logging
from typing import List

from pydantic import ValidationError

from ..domain.models import Board
from ..errors import BackendError
from .base import JSONAdapter

logger = logging.getLogger(__name__)

SEARCH_PATH = "/api/search"
DASHBOARD_PATH = "/api/dashboards/uid/{uid}"
PAGE_SIZE = 100


class GrafanaAdapter(JSONAdapter):
    """Adapter for the Grafana HTTP API.

    ``api_key`` is a service account token, sent as a bearer token.
    """

    name = "grafana"

    async def dashboard_uids(self) -> List[str]:
        """List the UID of every dashboard, walking search pages until one is empty."""
        uids: List[str] = []
        page = 1
        while True:
            hits = await self._get_json(
                SEARCH_PATH, {"type": "dash-db", "limit": PAGE_SIZE, "page": page}
            )
            if not isinstance(hits, list):
                raise BackendError(self.name, SEARCH_PATH, "search result is not a list")
            if not hits:
                break
            uids.extend(hit["uid"] for hit in hits if hit.get("uid"))
            page += 1
        logger.info("grafana.dashboards.found", extra={"count": len(uids)})
        return uids

    async def dashboard(self, uid: str) -> Board:
        """Fetch one dashboard model by UID."""
        path = DASHBOARD_PATH.format(uid=uid)
        payload = await self._get_json(path)
        raw = payload.get("dashboard") if isinstance(payload, dict) else None
        if not isinstance(raw, dict):
            raise BackendError(self.name, path, f"no dashboard model for uid {uid!r}")
        raw.setdefault("uid", uid)
        try:
            return Board.model_validate(raw)
        except ValidationError as exc:
            raise BackendError(self.name, path, f"decode dashboard: {exc}") from exc

    async def dashboards(self) -> List[Board]:
        """Fetch every dashboard, in search order."""
        boards: List[Board] = []
        for uid in await self.dashboard_uids():
            logger.debug("grafana.dashboard.fetch", extra={"uid": uid})
            boards.append(await self.dashboard(uid))
        return boards
