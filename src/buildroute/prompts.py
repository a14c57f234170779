"""Prompts and structured-call definitions for builder model calls.

Each structured call is a ``CallSpec``: a function name, a system prompt, and
a pydantic response model whose JSON schema becomes the tool parameters.
Prompt builders return the prompt together with the token estimate of its
static head so callers can account for cached input.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from buildroute.text import LINE_NUM_PREFIX
from buildroute.tokens import estimate_tokens

WHOLE_FILE_TAG = "WholeFile"


class _CallResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class WholeFileResponse(_CallResponse):
    """Arguments of the ``wholeFile`` call."""

    whole_file: str = Field(
        alias="wholeFile", description="The full file content with all changes applied"
    )


class CommitMsgResponse(_CallResponse):
    """Arguments of the ``commitMsg`` call."""

    commit_msg: str = Field(
        alias="commitMsg", description="The commit message summarizing the changes"
    )


class ExecStatusResponse(_CallResponse):
    """Arguments of the ``exec_status_check`` call."""

    reasoning: str = Field(
        description="The reasoning explaining why the subtask is or isn't finished."
    )
    subtask_finished: bool = Field(
        alias="subtaskFinished",
        description="True if the subtask has been completed; otherwise false.",
    )


class Replacement(_CallResponse):
    """One text replacement proposed by ``validate_fix``."""

    old: str = Field(description="Original text to be replaced")
    new: str = Field(description="Replacement text")


class ValidateFixResponse(_CallResponse):
    """Arguments of the ``validate_fix`` call."""

    replacements: list[Replacement] = Field(description="List of replacement operations")


@dataclass(frozen=True)
class CallSpec:
    """A forced function call: name, instructions, and argument model."""

    name: str
    description: str
    system_prompt: str
    response_model: type[_CallResponse]

    def tool(self) -> dict[str, Any]:
        """Return the tool definition passed to model clients."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.response_model.model_json_schema(),
        }

    def tool_choice(self) -> dict[str, str]:
        """Return a tool choice forcing this call."""
        return {"name": self.name}


SYS_WHOLE_FILE_JSON = """You are an AI coding assistant. You must provide the entire merged file with all proposed updates applied. Respond by invoking the function "wholeFile" with a single argument:

{
  "wholeFile": "<entire file content here>"
}

Do not include any additional text, formatting, or tags. Only return the function call in JSON format."""

SYS_COMMIT_MSG_JSON = """You are a tool that generates a concise, descriptive git commit message summarizing the pending changes.
Respond by calling the function "commitMsg" exactly once with a JSON object containing a single property "commitMsg" set to the generated commit message. Do not include any additional text."""

SYS_EXEC_STATUS_JSON = """You are an execution status assistant. Analyze the current message and conversation context to determine whether the current subtask has been completed. Respond strictly with a JSON object in the following format:
{
  "reasoning": "<detailed explanation of your decision>",
  "subtaskFinished": <true|false>
}"""

SYS_VALIDATE_FIX_JSON = """Please perform a JSON function call named "validate_fix" on the provided code. The function should return an object with a single key "replacements", which is an array of objects each containing:
- "old": the original text snippet that needs to be replaced.
- "new": the corrected text snippet.
Output only the JSON function call with its arguments and nothing else."""

WHOLE_FILE_CALL = CallSpec(
    name="wholeFile",
    description="Returns the entire merged file content with proposed changes applied",
    system_prompt=SYS_WHOLE_FILE_JSON,
    response_model=WholeFileResponse,
)

COMMIT_MSG_CALL = CallSpec(
    name="commitMsg",
    description="Generate a concise commit message summarizing the pending changes",
    system_prompt=SYS_COMMIT_MSG_JSON,
    response_model=CommitMsgResponse,
)

EXEC_STATUS_CALL = CallSpec(
    name="exec_status_check",
    description=(
        "Determines if a subtask is completed based on the current message "
        "and conversation history."
    ),
    system_prompt=SYS_EXEC_STATUS_JSON,
    response_model=ExecStatusResponse,
)

VALIDATE_FIX_CALL = CallSpec(
    name="validate_fix",
    description=(
        "Return JSON object with replacements for fixing syntax errors and "
        "applying updates"
    ),
    system_prompt=SYS_VALIDATE_FIX_JSON,
    response_model=ValidateFixResponse,
)

_WHOLE_FILE_TAGGED_HEAD = f"""You are an AI coding assistant. Apply the proposed updates to the original file and output the entire resulting file.

The original file and the proposed updates are annotated with line numbers in the form '{LINE_NUM_PREFIX}<n>: '. The line numbers are for reference only. Do not include them in your output.

Output the complete file with every proposed update applied, inside exactly one <{WHOLE_FILE_TAG}> block:

<{WHOLE_FILE_TAG}>
(entire file content)
</{WHOLE_FILE_TAG}>

Do not output anything after the closing </{WHOLE_FILE_TAG}> tag and never open a second <{WHOLE_FILE_TAG}> tag inside the block. Do not abbreviate any part of the file with placeholders like '... existing code ...'. Every line of the original file that the updates do not change must appear in your output exactly as it was.
"""


def whole_file_context(
    file_path: str,
    original_with_line_nums: str,
    proposed_with_line_nums: str,
    description: str,
    comments: str,
) -> str:
    """Return the file-specific part of a whole-file build prompt."""
    sections = [
        f"Path: {file_path}",
        f'<OriginalFile path="{file_path}">\n{original_with_line_nums}</OriginalFile>',
        f"<ProposedUpdates>\n{proposed_with_line_nums}</ProposedUpdates>",
    ]
    if description:
        sections.append(f"<Description>\n{description}\n</Description>")
    if comments:
        sections.append(f"<Comments>\n{comments}\n</Comments>")
    return "\n\n".join(sections)


def whole_file_prompt(
    file_path: str,
    original_with_line_nums: str,
    proposed_with_line_nums: str,
    description: str,
    comments: str,
) -> tuple[str, int]:
    """Return the tagged-text whole-file prompt and its head token estimate."""
    context = whole_file_context(
        file_path,
        original_with_line_nums,
        proposed_with_line_nums,
        description,
        comments,
    )
    return f"{_WHOLE_FILE_TAGGED_HEAD}\n{context}", estimate_tokens(
        _WHOLE_FILE_TAGGED_HEAD
    )


def whole_file_prediction(original: str) -> str:
    """Return the predicted output for a whole-file build of *original*."""
    return f"\n<{WHOLE_FILE_TAG}>\n{original}\n</{WHOLE_FILE_TAG}>\n"
