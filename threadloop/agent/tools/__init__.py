# Demo tool sets: file deletion and banking (approval demo), research and delegation (workflow demo).
# Context-bound tools take (ctx, params, options); plain tools take (params, options).

from .file_tools import DELETE_FILE, delete_file
from .banking_tools import CHECK_BALANCE, TRANSFER_MONEY, APPROVAL_THRESHOLD, check_balance, transfer_money
from .research_tools import (
    DELEGATE_TOOL_NAME,
    SUBAGENT_COMPLETION_TOOL_NAME,
    INTERNET_SEARCH,
    UPDATE_SCRATCHPAD,
    READ_SCRATCHPAD,
    DELEGATE_TO_SUBAGENT,
    SUBAGENT_COMPLETION,
)

__all__ = [
    "DELETE_FILE",
    "delete_file",
    "CHECK_BALANCE",
    "TRANSFER_MONEY",
    "APPROVAL_THRESHOLD",
    "check_balance",
    "transfer_money",
    "DELEGATE_TOOL_NAME",
    "SUBAGENT_COMPLETION_TOOL_NAME",
    "INTERNET_SEARCH",
    "UPDATE_SCRATCHPAD",
    "READ_SCRATCHPAD",
    "DELEGATE_TO_SUBAGENT",
    "SUBAGENT_COMPLETION",
]
