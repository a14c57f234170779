"""Mock model client for running builds without API calls."""

from __future__ import annotations

import itertools
import json
import re
from typing import TYPE_CHECKING

from buildroute.prompts import WHOLE_FILE_CALL, WHOLE_FILE_TAG
from buildroute.providers.models import ModelResponse
from buildroute.text import remove_line_nums
from buildroute.tokens import estimate_messages, estimate_tokens

if TYPE_CHECKING:
    from buildroute.providers.models import ModelRequestParams

_PROPOSED_RE = re.compile(r"<ProposedUpdates>\n(.*?)</ProposedUpdates>", re.DOTALL)


class MockClient:
    """Deterministic client that accepts every proposal as the final file.

    Whole-file requests are answered in the requested format with the
    proposed updates (line numbers removed). Anything else is echoed.
    """

    def __init__(self) -> None:
        """Start generation ids at ``mock-1``."""
        self._ids = itertools.count(1)

    async def request(self, params: ModelRequestParams) -> ModelResponse:
        """Return a deterministic mock response."""
        if params.before_request is not None:
            params.before_request()
        try:
            proposed = None
            for m in params.messages:
                match = _PROPOSED_RE.search(m.content)
                if match:
                    proposed = remove_line_nums(match.group(1))
                    break

            wants_call = (
                params.tool_choice is not None
                and params.tool_choice.get("name") == WHOLE_FILE_CALL.name
            )
            if proposed is not None and wants_call:
                content = json.dumps({"wholeFile": proposed})
            elif proposed is not None:
                content = f"<{WHOLE_FILE_TAG}>\n{proposed}</{WHOLE_FILE_TAG}>"
            else:
                last = params.messages[-1].content if params.messages else ""
                content = f"echo: {last[:100]}"

            input_tokens = estimate_messages(params.messages)
            output_tokens = estimate_tokens(content)
            return ModelResponse(
                content=content,
                generation_id=f"mock-{next(self._ids)}",
                usage={
                    "input_tokens": input_tokens,
                    "output_tokens": output_tokens,
                    "total_tokens": input_tokens + output_tokens,
                },
                finish_reason="stop",
            )
        finally:
            if params.after_request is not None:
                params.after_request()

    async def aclose(self) -> None:
        """Nothing to release."""
