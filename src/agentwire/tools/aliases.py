"""Alternate names the model uses for the built-in tools.

Case variants ("bash", "READ") are resolved by the registry itself; this
table only lists names that differ by more than case. Every target must be
a registered tool, checked by ``ToolRegistry.validate_aliases()`` at start.
"""

from __future__ import annotations

from types import MappingProxyType

TOOL_ALIASES = MappingProxyType({
    "read_file": "Read",
    "view_file": "Read",
    "write_file": "Write",
    "create_file": "Write",
    "edit_file": "Edit",
    "str_replace": "Edit",
    "run_command": "Bash",
    "shell": "Bash",
    "execute_command": "Bash",
    "find_files": "Glob",
    "search_files": "Grep",
    "list_directory": "LS",
    "list_files": "LS",
    "todo_write": "TodoWrite",
    "AskUserQuestion": "AskUser",
    "ask_user": "AskUser",
    "BashOutput": "TaskStatus",
    "KillShell": "TaskStatus",
    "WebFetch": "Fetch",
    "http_request": "Fetch",
})
