"""
Context for answering replies to the bot's review comments.

Review comments posted by the analyzer carry labeled fields:

    **File**: `src/app.py`
    **Line_Start**: 10
    **Line_End**: 14
    **Severity**: High
    **Issue Type**: Security
    ```suggestion
    ...
    ```

Extraction is best effort. A comment without any of these fields yields None
and the reply is still answered from the raw comment text.
"""

import re
from enum import Enum

from pydantic import BaseModel

_FILE = re.compile(r"\*\*File\*\*:\s*`([^`]+)`")
_LINE_START = re.compile(r"\*\*Line_Start\*\*:\s*(\d+)")
_LINE_END = re.compile(r"\*\*Line_End\*\*:\s*(\d+)")
_SEVERITY = re.compile(r"\*\*Severity\*\*:\s*([^\n]+)")
_ISSUE_TYPE = re.compile(r"\*\*Issue\s*Type\*\*:\s*([^\n]+)")
_SUGGESTION = re.compile(r"```suggestion\s*\n([\s\S]*?)\n```")

_INTENT_TAG = re.compile(r"\[INTENT:\s*(QUESTION|FEEDBACK|SUGGESTION|DISCUSSION)\]\s*", re.IGNORECASE)
_GENERIC_REPLY = re.compile(r"^(?:Acknowledged|Missing context)\b", re.IGNORECASE)

MIN_REPLY_LENGTH = 20


class ReplyIntent(str, Enum):
    QUESTION = "QUESTION"
    FEEDBACK = "FEEDBACK"
    SUGGESTION = "SUGGESTION"
    DISCUSSION = "DISCUSSION"


class ReplyContext(BaseModel):
    file_path: str | None = None
    line_start: int | None = None
    line_end: int | None = None
    severity: str | None = None
    issue_type: str | None = None
    suggested_code: str | None = None


def _first(pattern: re.Pattern, text: str) -> str | None:
    match = pattern.search(text)
    return match.group(1).strip() if match else None


def extract_reply_context(comment_body: str | None) -> ReplyContext | None:
    if not comment_body:
        return None
    line_start = _first(_LINE_START, comment_body)
    line_end = _first(_LINE_END, comment_body)
    context = ReplyContext(
        file_path=_first(_FILE, comment_body),
        line_start=int(line_start) if line_start else None,
        line_end=int(line_end) if line_end else None,
        severity=_first(_SEVERITY, comment_body),
        issue_type=_first(_ISSUE_TYPE, comment_body),
        suggested_code=_first(_SUGGESTION, comment_body),
    )
    if not any(context.model_dump().values()):
        return None
    return context


def parse_intent(reply: str) -> ReplyIntent | None:
    match = _INTENT_TAG.search(reply)
    return ReplyIntent(match.group(1).upper()) if match else None


def strip_intent(reply: str) -> str:
    return _INTENT_TAG.sub("", reply, count=1).strip()


def is_generic_reply(reply: str) -> bool:
    """Empty, too short, or one of the completion model's fallback phrasings."""
    text = reply.strip()
    return len(text) < MIN_REPLY_LENGTH or _GENERIC_REPLY.match(text) is not None


def _format_context(context: ReplyContext) -> str:
    lines = []
    if context.file_path:
        lines.append(f"File: {context.file_path}")
    if context.line_start is not None:
        lines.append(f"Line_Start: {context.line_start}")
    if context.line_end is not None:
        lines.append(f"Line_End: {context.line_end}")
    if context.severity:
        lines.append(f"Severity: {context.severity}")
    if context.issue_type:
        lines.append(f"Issue_Type: {context.issue_type}")
    if context.suggested_code:
        lines.append(f"Suggestion:\n```\n{context.suggested_code}\n```")
    return "\n".join(lines)


def build_reply_prompt(
    *,
    repo_full_name: str,
    pr_number: int | None,
    parent_body: str,
    reply_body: str,
    reply_author: str | None,
    context: ReplyContext | None = None,
    path: str | None = None,
    line: int | None = None,
    diff_hunk: str | None = None,
) -> str:
    sections = [
        "You are Beetle AI, an AI code reviewer.\n"
        "You previously commented on this Pull Request, and the user replied with "
        "doubts/questions about your comment.\n"
        "Read the context carefully and respond with simple, clear text that resolves "
        "the user's query. Include concise code suggestions only if they help.",
        f"Repository: {repo_full_name}" + (f" | PR #{pr_number}" if pr_number else ""),
        f"--- Beetle Original Comment ---\n{parent_body}",
    ]
    if context is not None:
        sections.append(f"--- Extracted Context ---\n{_format_context(context)}")
    if path or line is not None:
        location = [f"Path: {path}"] if path else []
        if line is not None:
            location.append(f"Line: {line}")
        sections.append("--- Review Location ---\n" + "\n".join(location))
    if diff_hunk:
        sections.append(f"--- Diff Hunk (context) ---\n```diff\n{diff_hunk}\n```")
    sections.append(f"--- User Reply ---\n{reply_body}")
    sections.append(
        "--- Instruction ---\n"
        "FIRST, classify the user's reply intent. Start your response with ONE of these tags:\n"
        "- [INTENT: QUESTION] - the user is asking a question or seeking clarification\n"
        "- [INTENT: DISCUSSION] - the user wants to discuss the approach\n"
        "- [INTENT: FEEDBACK] - the user reports that something did not work or disagrees\n"
        "- [INTENT: SUGGESTION] - the user offers a suggestion or alternative approach\n"
        "\n"
        "THEN answer. For FEEDBACK start with a short acknowledgment such as "
        "\"Noted, thanks for the feedback! 📝\"; for SUGGESTION start with a short "
        "appreciation such as \"Great idea! 💡\". For QUESTION or DISCUSSION answer directly.\n"
        "Start with the main point, no greetings or filler. Explain misunderstandings briefly.\n"
        f"Begin your response with '@{reply_author or 'author'}' followed by the answer.\n"
        "If a code fix helps, put it in a collapsible block:\n"
        "<details><summary>Suggested fix</summary>\n"
        "```suggestion\n<replacement snippet for the relevant lines>\n```\n"
        "</details>"
    )
    return "\n\n".join(sections)
