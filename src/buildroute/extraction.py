"""Turn raw model output into file content.

Two formats are supported, selected by the resolved model's preferred output
format:

- ``OutputFormat.TOOL_CALL_JSON``: the content is the JSON arguments of a
  forced function call and must carry a non-empty content field.
- ``OutputFormat.XML``: the content is the text between a literal start tag
  and its end tag; a nested start tag is rejected.

Every failure raises ``ExtractionError``, which the whole-file builder treats
as recoverable.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from pydantic import ValidationError

from buildroute.errors import ExtractionError
from buildroute.prompts import WHOLE_FILE_CALL, WHOLE_FILE_TAG
from buildroute.registry import OutputFormat

if TYPE_CHECKING:
    from pydantic import BaseModel

    from buildroute.prompts import CallSpec


@runtime_checkable
class ResponseExtractor(Protocol):
    """Extract the usable result from a model response."""

    @property
    def output_format(self) -> OutputFormat:
        """Format this extractor understands."""
        ...

    def extract(self, content: str) -> str:
        """Return extracted content or raise ``ExtractionError``."""
        ...


def get_xml_content(content: str, tag: str) -> str | None:
    """Return the text inside the first ``<tag>...</tag>`` pair of *content*.

    One newline directly after the start tag is dropped. Returns None when the
    pair is missing or the start tag appears again inside the block.
    """
    start_tag = f"<{tag}>"
    end_tag = f"</{tag}>"
    start = content.find(start_tag)
    if start == -1:
        return None
    body_start = start + len(start_tag)
    end = content.find(end_tag, body_start)
    if end == -1:
        return None
    body = content[body_start:end]
    if start_tag in body:
        return None
    if body.startswith("\r\n"):
        return body[2:]
    if body.startswith("\n"):
        return body[1:]
    return body


class StructuredCallExtractor:
    """Decode forced function-call arguments into the call's response model."""

    def __init__(self, call: CallSpec = WHOLE_FILE_CALL, *, field: str = "whole_file") -> None:
        """Extract *field* from the arguments of *call*."""
        if field not in call.response_model.model_fields:
            raise ValueError(
                f"{call.response_model.__name__} has no field {field!r}"
            )
        self.call = call
        self.field = field

    @property
    def output_format(self) -> OutputFormat:
        """Structured tool-call JSON."""
        return OutputFormat.TOOL_CALL_JSON

    def parse(self, content: str) -> BaseModel:
        """Validate *content* against the call's response model."""
        try:
            payload = json.loads(content)
        except (TypeError, ValueError) as e:
            raise ExtractionError(
                f"error unmarshaling JSON response: {e}",
                hint=f"Expected the arguments of a {self.call.name!r} function call.",
            ) from e
        try:
            return self.call.response_model.model_validate(payload)
        except ValidationError as e:
            raise ExtractionError(
                f"invalid {self.call.name} payload: {e.error_count()} validation error(s)",
                hint=f"Expected the arguments of a {self.call.name!r} function call.",
            ) from e

    def extract(self, content: str) -> str:
        """Return the content field; empty content is an extraction failure."""
        value = getattr(self.parse(content), self.field)
        if not isinstance(value, str) or not value:
            raise ExtractionError(f"empty {self.field} in JSON response")
        return value


class TaggedTextExtractor:
    """Extract the block between ``<tag>`` and ``</tag>``."""

    def __init__(self, tag: str = WHOLE_FILE_TAG) -> None:
        """Extract content wrapped in *tag*."""
        self.tag = tag

    @property
    def output_format(self) -> OutputFormat:
        """Tagged text."""
        return OutputFormat.XML

    def extract(self, content: str) -> str:
        """Return the tagged block; a missing or empty block is a failure."""
        value = get_xml_content(content, self.tag)
        if value is None:
            raise ExtractionError(f"no <{self.tag}> block found in response")
        if not value:
            raise ExtractionError(f"empty <{self.tag}> block in response")
        return value


def extractor_for(output_format: OutputFormat) -> ResponseExtractor:
    """Return the whole-file extractor for *output_format*."""
    if output_format is OutputFormat.TOOL_CALL_JSON:
        return StructuredCallExtractor()
    return TaggedTextExtractor()
