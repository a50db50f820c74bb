"""
Fix Applicator
==============
Hands a FixSuggestion to the service that edits the codebase.

The default applicator POSTs the suggestion as JSON to the configured
endpoint; a 2xx response means applied, any other status means rejected.
Transport failures propagate so the orchestrator can mark the fix failed.
"""
import logging
from typing import Optional

import httpx

from debugloop.core.config import HTTP_TIMEOUT_SECONDS
from debugloop.models.fix_suggestion import FixSuggestion

logger = logging.getLogger(__name__)


class HttpFixApplicator:
    def __init__(self, endpoint: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.endpoint = endpoint
        self._transport = transport

    async def apply(self, fix: FixSuggestion) -> bool:
        async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS, transport=self._transport) as client:
            response = await client.post(self.endpoint, json=fix.model_dump(mode="json"))

        if response.is_success:
            logger.info("Fix %s applied (%s)", fix.id, fix.category)
            return True
        logger.warning("Fix %s rejected: HTTP %d", fix.id, response.status_code)
        return False
