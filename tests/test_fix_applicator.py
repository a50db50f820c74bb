import asyncio
import json

import httpx

from debugloop.agents.fix_applicator import HttpFixApplicator
from debugloop.models.fix_suggestion import FixSuggestion


def test_applied_on_2xx_rejected_otherwise():
    received = []

    def handler(request):
        body = json.loads(request.content)
        received.append(body)
        return httpx.Response(200 if body["category"] == "null-reference" else 422)

    applicator = HttpFixApplicator("https://fixer.internal/apply", transport=httpx.MockTransport(handler))

    async def run_test():
        accepted = await applicator.apply(FixSuggestion(error_id="e1", category="null-reference"))
        refused = await applicator.apply(FixSuggestion(error_id="e2", category="unknown"))
        return accepted, refused

    assert asyncio.run(run_test()) == (True, False)
    assert received[0]["error_id"] == "e1"
