"""
Banking tools for the approval demo agent: transfers over APPROVAL_THRESHOLD need approval,
balance checks never do. Balances live in deps["balances"] when provided.
"""
from __future__ import annotations

from typing import Any

from ..tool_registry import ToolCallOptions, ToolContext, create_tool

APPROVAL_THRESHOLD = 100


def _balances(ctx: ToolContext) -> dict[str, Any] | None:
    return ctx.deps.get("balances") if isinstance(ctx.deps, dict) else None


async def transfer_needs_approval(ctx: ToolContext, params: dict, options: ToolCallOptions) -> bool:
    return params.get("amount", 0) > APPROVAL_THRESHOLD


async def transfer_money(ctx: ToolContext, params: dict, options: ToolCallOptions) -> str:
    amount = params["amount"]
    to_account = params["to_account"]
    balances = _balances(ctx)
    if balances is not None:
        balances[to_account] = balances.get(to_account, 0) + amount
    return f"Transferred ${amount} to account {to_account}"


async def check_balance(ctx: ToolContext, params: dict, options: ToolCallOptions) -> str:
    account_id = params["account_id"]
    balances = _balances(ctx) or {}
    return f"Account {account_id} has a balance of ${balances.get(account_id, 0)}"


TRANSFER_MONEY = create_tool(
    name="transfer_money",
    description="Transfer money to an account",
    input_schema={
        "type": "object",
        "properties": {
            "amount": {"type": "number", "description": "Amount in dollars to transfer"},
            "to_account": {"type": "string", "description": "Target account ID"},
        },
        "required": ["amount", "to_account"],
        "additionalProperties": False,
    },
    execute=transfer_money,
    needs_approval=transfer_needs_approval,
)

CHECK_BALANCE = create_tool(
    name="check_balance",
    description="Check the current account balance",
    input_schema={
        "type": "object",
        "properties": {
            "account_id": {"type": "string", "description": "Account ID to check"},
        },
        "required": ["account_id"],
        "additionalProperties": False,
    },
    execute=check_balance,
)
