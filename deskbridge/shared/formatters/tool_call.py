"""Tool invocation descriptions for chat activity notices.

A registry of per-tool describers turns a tool name plus its input into
a one-line notice such as ``:eyes: Reading `src/app.py` ``.

Adding a new tool requires only a single decorated function:

    @tool_describer("MyTool")
    def _describe_my_tool(name, args):
        return ToolDescription(emoji="gear", verb="Doing", target=...)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable


@dataclass
class ToolDescription:
    """Structured description of one tool invocation."""

    emoji: str = "gear"
    verb: str = ""
    target: str = ""
    code: bool = True  # Render target as inline code

    def render(self) -> str:
        if not self.target:
            return f":{self.emoji}: {self.verb}"
        target = f"`{self.target}`" if self.code else self.target
        return f":{self.emoji}: {self.verb} {target}"


# ── Registry ──

_DESCRIBERS: dict[str, Callable[[str, dict], ToolDescription]] = {}

_TOOL_EMOJIS: dict[str, str] = {
    "Bash": "computer",
    "Read": "eyes",
    "Write": "memo",
    "Edit": "pencil2",
    "Glob": "mag",
    "Grep": "mag_right",
    "WebFetch": "globe_with_meridians",
    "WebSearch": "mag",
    "Task": "robot_face",
}

_TOOL_NAME_ALIASES: dict[str, str] = {
    "read": "Read",
    "read_file": "Read",
    "write": "Write",
    "write_file": "Write",
    "edit": "Edit",
    "edit_file": "Edit",
    "multiedit": "Edit",
    "bash": "Bash",
    "run_bash": "Bash",
    "glob": "Glob",
    "grep": "Grep",
    "webfetch": "WebFetch",
    "websearch": "WebSearch",
    "task": "Task",
    "agent": "Task",
}


def tool_describer(name: str):
    """Decorator to register a describer for a given tool name."""

    def decorator(fn: Callable[[str, dict], ToolDescription]):
        _DESCRIBERS[name] = fn
        return fn

    return decorator


def normalize_tool_name(name: str) -> str:
    """Strip MCP server prefix and map aliases to canonical names.

    E.g. ``mcp__files__read_file`` → ``Read``.
    """
    if name.startswith("mcp__") and name.count("__") >= 2:
        name = name.split("__", 2)[2]
    return _TOOL_NAME_ALIASES.get(name.lower(), name)


def tool_emoji(name: str) -> str:
    return _TOOL_EMOJIS.get(normalize_tool_name(name), "gear")


def describe_tool(name: str, args: dict[str, Any] | None = None) -> str:
    """Main entry point: one-line mrkdwn notice for a tool invocation."""
    args = args if isinstance(args, dict) else {}
    describer = _DESCRIBERS.get(name)
    if describer is None:
        describer = _DESCRIBERS.get(normalize_tool_name(name), _describe_default)
    return describer(name, args).render()


# ── Helpers ──


def _basename(path: str) -> str:
    """Extract a short display path (last 2 components)."""
    if not path:
        return ""
    parts = path.replace("\\", "/").rstrip("/").split("/")
    return "/".join(parts[-2:]) if len(parts) >= 2 else parts[-1]


def _trunc(text: str, length: int = 60) -> str:
    """Truncate text with ellipsis, collapsed onto one line."""
    if not text:
        return ""
    text = " ".join(str(text).split())
    if len(text) <= length:
        return text
    return text[: length - 3] + "..."


def _first_str(args: dict, *keys: str) -> str:
    for key in keys:
        value = args.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


# ── Describers ──


@tool_describer("Read")
def _describe_read(name: str, args: dict) -> ToolDescription:
    path = _first_str(args, "file_path", "path", "notebook_path")
    return ToolDescription(_TOOL_EMOJIS["Read"], "Reading", _basename(path))


@tool_describer("Write")
def _describe_write(name: str, args: dict) -> ToolDescription:
    path = _first_str(args, "file_path", "path")
    return ToolDescription(_TOOL_EMOJIS["Write"], "Writing", _basename(path))


@tool_describer("Edit")
def _describe_edit(name: str, args: dict) -> ToolDescription:
    path = _first_str(args, "file_path", "path")
    return ToolDescription(_TOOL_EMOJIS["Edit"], "Editing", _basename(path))


@tool_describer("Bash")
def _describe_bash(name: str, args: dict) -> ToolDescription:
    description = _first_str(args, "description")
    if description:
        return ToolDescription(_TOOL_EMOJIS["Bash"], _trunc(description, 80), code=False)
    command = _first_str(args, "command", "cmd")
    return ToolDescription(_TOOL_EMOJIS["Bash"], "Running", _trunc(command))


@tool_describer("Glob")
def _describe_glob(name: str, args: dict) -> ToolDescription:
    pattern = _first_str(args, "pattern", "path")
    return ToolDescription(_TOOL_EMOJIS["Glob"], "Finding files", _trunc(pattern))


@tool_describer("Grep")
def _describe_grep(name: str, args: dict) -> ToolDescription:
    pattern = _first_str(args, "pattern", "query")
    return ToolDescription(_TOOL_EMOJIS["Grep"], "Searching for", _trunc(pattern))


@tool_describer("WebFetch")
def _describe_web_fetch(name: str, args: dict) -> ToolDescription:
    url = _first_str(args, "url")
    return ToolDescription(_TOOL_EMOJIS["WebFetch"], "Fetching", _trunc(url, 80), code=False)


@tool_describer("WebSearch")
def _describe_web_search(name: str, args: dict) -> ToolDescription:
    query = _first_str(args, "query")
    return ToolDescription(
        _TOOL_EMOJIS["WebSearch"], "Searching the web for",
        f"\"{_trunc(query)}\"" if query else "", code=False,
    )


@tool_describer("Task")
def _describe_task(name: str, args: dict) -> ToolDescription:
    description = _first_str(args, "description", "prompt")
    return ToolDescription(
        _TOOL_EMOJIS["Task"], "Delegating:" if description else "Delegating a subtask",
        _trunc(description), code=False,
    )


@tool_describer("TodoWrite")
def _describe_todo_write(name: str, args: dict) -> ToolDescription:
    todos = args.get("todos")
    count = len(todos) if isinstance(todos, list) else 0
    verb = f"Updating task list ({count} items)" if count else "Updating task list"
    return ToolDescription("clipboard", verb)


def _describe_default(name: str, args: dict) -> ToolDescription:
    bare = normalize_tool_name(name)
    key = _first_str(args, "file_path", "path", "pattern", "query", "url", "command")
    return ToolDescription(tool_emoji(name), f"Using {bare}", _trunc(key))
