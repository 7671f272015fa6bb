"""Result, usage and error extraction from merged agent event streams."""

from __future__ import annotations

import json
from collections.abc import Iterator
from dataclasses import dataclass

from agent_loop.models import EngineKind, ParsedResult

COMPLETION_MARKER = "<promise>COMPLETE</promise>"
NO_RESULT_TEXT = "No result text"
UNKNOWN_ERROR = "Unknown error"


@dataclass(frozen=True, slots=True)
class ResultFieldPaths:
    """Field lookup order for one backend output shape."""

    response: tuple[tuple[str, ...], ...]
    input_tokens: tuple[tuple[str, ...], ...]
    output_tokens: tuple[tuple[str, ...], ...]


_FIELD_PATHS: dict[EngineKind, ResultFieldPaths] = {
    EngineKind.CLAUDE: ResultFieldPaths(
        response=(("result",),),
        input_tokens=(("usage", "input_tokens"),),
        output_tokens=(("usage", "output_tokens"),),
    ),
    EngineKind.OPENCODE: ResultFieldPaths(
        response=(("result",), ("text",)),
        input_tokens=(("usage", "input_tokens"), ("usage", "inputTokens")),
        output_tokens=(("usage", "output_tokens"), ("usage", "outputTokens")),
    ),
}


def extract_result(raw_output: str, kind: EngineKind) -> ParsedResult:
    """Parse a finished output stream into a `ParsedResult`.

    Only the last ``result`` event is used. An ``error`` event anywhere in the
    stream wins over it. Missing or malformed fields degrade to the
    ``NO_RESULT_TEXT`` sentinel and zero tokens instead of raising.
    """

    is_complete = has_completion_marker(raw_output)
    error = find_error(raw_output)
    if error is not None:
        return ParsedResult(response=NO_RESULT_TEXT, is_complete=is_complete, error=error)

    event = last_result_event(raw_output)
    if event is None:
        return ParsedResult(response=NO_RESULT_TEXT, is_complete=is_complete)

    paths = _FIELD_PATHS[kind]
    response = _first_text(event, paths.response)
    return ParsedResult(
        response=response if response is not None else NO_RESULT_TEXT,
        input_tokens=_first_count(event, paths.input_tokens),
        output_tokens=_first_count(event, paths.output_tokens),
        is_complete=is_complete,
    )


def has_completion_marker(raw_output: str) -> bool:
    """Plain substring test over the whole stream, independent of JSON structure."""

    return COMPLETION_MARKER in raw_output


def last_result_event(raw_output: str) -> dict[str, object] | None:
    found: dict[str, object] | None = None
    for event in iter_events(raw_output):
        if event.get("type") == "result":
            found = event
    return found


def find_error(raw_output: str) -> str | None:
    """Return the message of the first ``error`` event, if any."""

    for line in raw_output.splitlines():
        event = _try_load_event(line)
        if event is None or event.get("type") != "error":
            continue
        return _error_message(event) or line.strip() or UNKNOWN_ERROR
    return None


def iter_events(raw_output: str) -> Iterator[dict[str, object]]:
    for line in raw_output.splitlines():
        event = _try_load_event(line)
        if event is not None:
            yield event


def _try_load_event(line: str) -> dict[str, object] | None:
    text = line.strip()
    if not text.startswith("{"):
        return None
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def _error_message(event: dict[str, object]) -> str | None:
    nested = event.get("error")
    if isinstance(nested, dict):
        message = nested.get("message")
        if isinstance(message, str) and message:
            return message
    if isinstance(nested, str) and nested:
        return nested
    message = event.get("message")
    if isinstance(message, str) and message:
        return message
    return None


def _lookup(event: dict[str, object], path: tuple[str, ...]) -> object | None:
    current: object = event
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
        if current is None:
            return None
    return current


def _first_text(event: dict[str, object], paths: tuple[tuple[str, ...], ...]) -> str | None:
    for path in paths:
        value = _lookup(event, path)
        if isinstance(value, str):
            return value
    return None


def _first_count(event: dict[str, object], paths: tuple[tuple[str, ...], ...]) -> int:
    for path in paths:
        value = _lookup(event, path)
        if value is not None:
            return _coerce_count(value)
    return 0


def _coerce_count(value: object) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(value, 0)
    if isinstance(value, float):
        return int(value) if value.is_integer() and value >= 0 else 0
    if isinstance(value, str):
        raw = value.strip()
        return int(raw) if raw.isdecimal() else 0
    return 0
