"""
File tools for the approval demo agent. Deletion is simulated; when the agent's deps carry a
"files" set, the deleted name is removed from it.
"""
from __future__ import annotations

import logging
from typing import Any

from ..tool_registry import ToolCallOptions, ToolContext, create_tool

logger = logging.getLogger(__name__)


def _deps(ctx: ToolContext) -> dict[str, Any]:
    return ctx.deps if isinstance(ctx.deps, dict) else {}


async def delete_file(ctx: ToolContext, params: dict, options: ToolCallOptions) -> str:
    """Deletes a file. Only ever runs after the user approved the call."""
    filename = params["filename"]
    logger.info(f"Deleting file {filename} (thread {ctx.thread_id}, call {options.tool_call_id})")
    files = _deps(ctx).get("files")
    if files is not None:
        if filename not in files:
            raise FileNotFoundError(f"File not found: {filename}")
        files.discard(filename)
    return f"Successfully deleted file: {filename}"


DELETE_FILE = create_tool(
    name="delete_file",
    description="Delete a file from the system. This is a destructive operation.",
    input_schema={
        "type": "object",
        "properties": {
            "filename": {"type": "string", "description": "The name of the file to delete"},
        },
        "required": ["filename"],
        "additionalProperties": False,
    },
    execute=delete_file,
    needs_approval=True,
)
