"""Translate runtime session updates into the ordered callback stream.

A session update looks like::

    {"sessionId": "...", "update": {"sessionUpdate": "tool_call", ...}}

Every event is forwarded raw first, then dispatched by ``sessionUpdate`` kind.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from agent_stream.protocol.events import ToolCallUpdatePayload
from agent_stream.runtime.base import PlanSnapshot, RuntimeCallbacks, ToolCallStart

logger = logging.getLogger(__name__)

_LIVE_URL = re.compile(r'"live_url"\s*:\s*"([^"]+)"')
_SCREENSHOT_URL = re.compile(r'"screenshot_url"\s*:\s*"([^"]+)"')


class MalformedUpdate(ValueError):
    """A session update that is missing fields its kind requires."""


def dispatch_session_update(event: dict[str, Any], callbacks: RuntimeCallbacks) -> None:
    callbacks.on_event(event)

    update = event.get("update")
    if not isinstance(update, dict):
        return
    kind = update.get("sessionUpdate")

    try:
        _dispatch_update(kind, update, callbacks)
    except (MalformedUpdate, ValidationError) as exc:
        logger.warning("session_update event=malformed kind=%s error=%s", kind, exc)


def _dispatch_update(kind: Any, update: dict[str, Any], callbacks: RuntimeCallbacks) -> None:
    if kind in ("agent_message_chunk", "user_message_chunk"):
        content = _content_block(update)
        if content.get("type") == "text" and content.get("text"):
            callbacks.on_message_chunk(content["text"])
        elif content.get("type") == "image" and content.get("data"):
            callbacks.on_image_chunk(content["data"], content.get("mimeType") or "image/png")
    elif kind == "agent_thought_chunk":
        content = _content_block(update)
        if content.get("type") == "text" and content.get("text"):
            callbacks.on_thought_chunk(content["text"])
    elif kind == "tool_call":
        callbacks.on_tool_call(_tool_call_start(update))
    elif kind == "tool_call_update":
        output_content = flatten_tool_content(update.get("content"))
        callbacks.on_tool_call_update(
            ToolCallUpdatePayload(
                tool_call_id=_tool_call_id(update),
                status=update.get("status"),
                title=update.get("title"),
                locations=update.get("locations"),
                output=update.get("rawOutput"),
                output_content=output_content,
            )
        )
        if output_content:
            live_url, screenshot_url = extract_browser_urls(output_content)
            if live_url or screenshot_url:
                callbacks.on_browser_url(live_url, screenshot_url)
    elif kind == "plan":
        snapshot = PlanSnapshot.model_validate({"entries": update.get("entries") or []})
        callbacks.on_plan(snapshot.entries)
    else:
        logger.debug("session_update event=ignored kind=%s", kind)


def _content_block(update: dict[str, Any]) -> dict[str, Any]:
    content = update.get("content")
    if content is None:
        return {}
    if not isinstance(content, dict):
        raise MalformedUpdate(f"content must be an object, got {type(content).__name__}")
    return content


def _tool_call_id(update: dict[str, Any]) -> str:
    tool_call_id = update.get("toolCallId")
    if not isinstance(tool_call_id, str) or not tool_call_id:
        raise MalformedUpdate("missing toolCallId")
    return tool_call_id


def flatten_tool_content(content: Any) -> str | None:
    """Join the text carried by a tool-call content array, newline separated."""
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return None

    text_parts: list[str] = []
    for item in content:
        if isinstance(item, str):
            text_parts.append(item)
        elif not isinstance(item, dict):
            continue
        elif item.get("type") == "content":
            inner = item.get("content")
            if isinstance(inner, dict) and inner.get("type") == "text" and inner.get("text"):
                text_parts.append(inner["text"])
        elif item.get("type") == "diff":
            if item.get("newText"):
                text_parts.append(item["newText"])
        elif isinstance(item.get("text"), str):
            text_parts.append(item["text"])
    return "\n".join(text_parts) if text_parts else None


def extract_browser_urls(text: str) -> tuple[str | None, str | None]:
    """Pull browser-use live and screenshot URLs out of tool output.

    The regex pass tolerates truncated JSON; a full parse prefers the top-level
    screenshot and otherwise takes the last step's screenshot.
    """
    live_url: str | None = None
    screenshot_url: str | None = None

    live_match = _LIVE_URL.search(text)
    if live_match:
        live_url = live_match.group(1)

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        screenshot_match = _SCREENSHOT_URL.search(text)
        if screenshot_match:
            screenshot_url = screenshot_match.group(1)
        return live_url, screenshot_url

    if not isinstance(parsed, dict):
        return live_url, screenshot_url
    live_url = live_url or parsed.get("live_url")
    if parsed.get("screenshot_url"):
        screenshot_url = parsed["screenshot_url"]
    else:
        steps = parsed.get("steps")
        if isinstance(steps, list) and steps and isinstance(steps[-1], dict):
            screenshot_url = steps[-1].get("screenshot_url")
    return live_url, screenshot_url


def _tool_call_start(update: dict[str, Any]) -> ToolCallStart:
    raw_input = update.get("rawInput")
    output_content: str | None = None
    if isinstance(raw_input, dict) and isinstance(raw_input.get("content"), str):
        output_content = raw_input["content"]
    content = update.get("content")
    # Edit tools carry the written file as a diff.
    for item in content if isinstance(content, list) else []:
        if isinstance(item, dict) and item.get("type") == "diff" and item.get("newText"):
            output_content = item["newText"]

    return ToolCallStart(
        tool_call_id=_tool_call_id(update),
        name=update.get("title") or "Unknown",
        title=update.get("title"),
        kind=update.get("kind") or "other",
        status=update.get("status") or "pending",
        input=raw_input,
        locations=update.get("locations"),
        output_content=output_content,
    )
