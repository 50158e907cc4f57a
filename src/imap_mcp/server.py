"""
IMAP MCP Server
===============

MCP server exposing multi-account mailbox tools over stdio.

INVARIANTS ENFORCED:
- INV-SESSION-04: No connection survives a tool call; no pooling
- INV-REPORT-01: Every tool call answers with a JSON report, never a fault
- No logging of passwords or message contents
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import asdict
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from contracts import MAX_BULK_ITEMS, InvalidArgumentError
from src.imap_mcp.accounts import AccountRegistry, load_registry
from src.imap_mcp.operations import MailboxOperations
from src.imap_mcp.session import DEFAULT_TIMEOUT

# Logs go to stderr; stdout carries the MCP stream
logging.basicConfig(
    level=os.environ.get("IMAP_MCP_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("imap-mcp")

_ACCOUNT = {"type": "string", "description": "Account key (see imap_list_accounts)"}
_UID_LIST = {"type": "array", "items": {"type": "integer"}}


def _folder(description: str) -> dict:
    return {"type": "string", "description": description, "default": "INBOX"}


TOOLS = [
    Tool(
        name="imap_list_accounts",
        description="List all configured IMAP accounts",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="imap_list_folders",
        description="List all folders/mailboxes for an IMAP account",
        inputSchema={
            "type": "object",
            "properties": {"account": _ACCOUNT},
            "required": ["account"],
        },
    ),
    Tool(
        name="imap_list_emails",
        description="List emails in a folder (newest `limit` matches, headers only)",
        inputSchema={
            "type": "object",
            "properties": {
                "account": _ACCOUNT,
                "folder": _folder("Folder name (default: INBOX)"),
                "limit": {
                    "type": "integer",
                    "description": "Max number of emails to return",
                    "minimum": 1,
                    "default": 20,
                },
                "criteria": {
                    "type": "string",
                    "description": "IMAP search criteria: ALL, UNSEEN, SEEN, RECENT, etc.",
                    "default": "ALL",
                },
            },
            "required": ["account"],
        },
    ),
    Tool(
        name="imap_move_email",
        description="Move an email to another folder",
        inputSchema={
            "type": "object",
            "properties": {
                "account": _ACCOUNT,
                "source_folder": _folder("Source folder"),
                "uid": {"type": "integer", "description": "Email UID to move"},
                "target_folder": {"type": "string", "description": "Target folder path"},
            },
            "required": ["account", "uid", "target_folder"],
        },
    ),
    Tool(
        name="imap_move_by_message_id",
        description="Move an email by Message-ID to another folder",
        inputSchema={
            "type": "object",
            "properties": {
                "account": _ACCOUNT,
                "source_folder": _folder("Source folder"),
                "message_id": {"type": "string", "description": "Email Message-ID header"},
                "target_folder": {"type": "string", "description": "Target folder path"},
                "strict": {
                    "type": "boolean",
                    "description": "Fail instead of using the first match when several emails share the Message-ID",
                    "default": False,
                },
            },
            "required": ["account", "message_id", "target_folder"],
        },
    ),
    Tool(
        name="imap_delete_email",
        description="Delete an email (marks as deleted and expunges)",
        inputSchema={
            "type": "object",
            "properties": {
                "account": _ACCOUNT,
                "folder": _folder("Folder containing the email"),
                "uid": {"type": "integer", "description": "Email UID to delete"},
            },
            "required": ["account", "uid"],
        },
    ),
    Tool(
        name="imap_bulk_move",
        description=f"Move multiple emails to a folder (at most {MAX_BULK_ITEMS} per call)",
        inputSchema={
            "type": "object",
            "properties": {
                "account": _ACCOUNT,
                "source_folder": _folder("Source folder"),
                "uids": {
                    **_UID_LIST,
                    "description": "Email UIDs to move",
                    "maxItems": MAX_BULK_ITEMS,
                },
                "target_folder": {"type": "string", "description": "Target folder path"},
            },
            "required": ["account", "uids", "target_folder"],
        },
    ),
    Tool(
        name="imap_set_flags",
        description="Add or remove flags (e.g. \\Seen, \\Flagged) on emails",
        inputSchema={
            "type": "object",
            "properties": {
                "account": _ACCOUNT,
                "folder": _folder("Folder containing the emails"),
                "uids": {**_UID_LIST, "description": "Email UIDs"},
                "flags": {"type": "array", "items": {"type": "string"}},
                "action": {"type": "string", "enum": ["add", "remove"], "default": "add"},
            },
            "required": ["account", "uids", "flags"],
        },
    ),
    Tool(
        name="imap_mark_unseen",
        description="Mark emails as unseen/unread by removing the \\Seen flag",
        inputSchema={
            "type": "object",
            "properties": {
                "account": _ACCOUNT,
                "folder": _folder("Folder containing the emails"),
                "uids": {
                    **_UID_LIST,
                    "description": "Email UIDs to mark unseen (if not provided, marks ALL emails in folder)",
                },
                "all_messages": {
                    "type": "boolean",
                    "description": "Mark ALL emails in folder as unseen",
                    "default": False,
                },
            },
            "required": ["account"],
        },
    ),
    Tool(
        name="imap_test_connection",
        description="Test connection and login for an account",
        inputSchema={
            "type": "object",
            "properties": {"account": _ACCOUNT},
            "required": ["account"],
        },
    ),
    Tool(
        name="smtp_send_email",
        description="Send an email via SMTP",
        inputSchema={
            "type": "object",
            "properties": {
                "account": _ACCOUNT,
                "to": {"type": "string", "description": "Recipient email address(es), comma-separated"},
                "subject": {"type": "string", "description": "Email subject"},
                "text": {"type": "string", "description": "Plain text body"},
                "html": {"type": "string", "description": "HTML body (optional, sent as alternative)"},
                "cc": {"type": "string", "description": "CC recipients (comma-separated)"},
                "bcc": {"type": "string", "description": "BCC recipients (comma-separated)"},
                "reply_to": {"type": "string", "description": "Reply-to address"},
            },
            "required": ["account", "to", "subject"],
        },
    ),
]


class ImapMCPServer:
    """MCP server mapping tool calls onto MailboxOperations."""

    def __init__(self, operations: MailboxOperations) -> None:
        self.operations = operations
        self._handlers = {
            "imap_list_accounts": operations.list_accounts,
            "imap_list_folders": operations.list_folders,
            "imap_list_emails": operations.list_emails,
            "imap_move_email": operations.move_email,
            "imap_move_by_message_id": operations.move_by_message_id,
            "imap_delete_email": operations.delete_email,
            "imap_bulk_move": operations.bulk_move,
            "imap_set_flags": operations.set_flags,
            "imap_mark_unseen": operations.mark_unseen,
            "imap_test_connection": operations.test_connection,
            "smtp_send_email": operations.send_email,
        }
        self._server = Server("imap-mcp")
        self._setup_tools()

    def _setup_tools(self) -> None:
        """Register MCP tools."""

        @self._server.list_tools()
        async def list_tools() -> list[Tool]:
            return TOOLS

        @self._server.call_tool()
        async def call_tool(name: str, arguments: dict[str, Any] | None) -> list[TextContent]:
            result = await self.dispatch(name, arguments or {})
            return [TextContent(type="text", text=self._serialize_result(result))]

    async def dispatch(self, name: str, arguments: dict[str, Any]) -> dict:
        """
        Run one tool in a worker thread.

        IMAP I/O is blocking; each call gets its own thread and session so
        concurrent calls never share state.
        """
        handler = self._handlers.get(name)
        if handler is None:
            return self._invalid(f"Unknown tool: {name}")
        logger.info("Tool call: %s", name)
        try:
            return await asyncio.to_thread(handler, **arguments)
        except TypeError as e:
            # Unknown or missing arguments never reach the handler body
            return self._invalid(f"Invalid arguments for {name}: {e}")

    @staticmethod
    def _invalid(message: str) -> dict:
        error = InvalidArgumentError(message)
        return {"success": False, "error": str(error), "code": error.code}

    def _serialize_result(self, result: Any) -> str:
        """Serialize result to JSON string."""

        def default_serializer(obj: Any) -> Any:
            if hasattr(obj, "__dataclass_fields__"):
                return asdict(obj)
            if hasattr(obj, "value"):  # Enum
                return obj.value
            raise TypeError(f"Cannot serialize {type(obj)}")

        return json.dumps(result, default=default_serializer, indent=2)

    async def run(self) -> None:
        """Run the MCP server."""
        accounts = self.operations.list_accounts().get("accounts", [])
        logger.info("Configured accounts: %d", len(accounts))
        for account in accounts:
            logger.info("  - %s: %s", account["key"], account["host"])
        async with stdio_server() as (read_stream, write_stream):
            await self._server.run(
                read_stream, write_stream, self._server.create_initialization_options()
            )


# Singleton for process lifetime
_server_instance: ImapMCPServer | None = None


def create_server(registry: AccountRegistry | None = None, **operation_options: Any) -> ImapMCPServer:
    """Create a new server instance (tests pass their own registry)."""
    if registry is None:
        registry = load_registry()
    timeout = float(os.environ.get("IMAP_MCP_TIMEOUT", DEFAULT_TIMEOUT))
    operation_options.setdefault("timeout", timeout)
    return ImapMCPServer(MailboxOperations(registry, **operation_options))


def get_server() -> ImapMCPServer:
    """Get or create the server singleton."""
    global _server_instance
    if _server_instance is None:
        _server_instance = create_server()
    return _server_instance


def main() -> None:
    """Console entry point."""
    asyncio.run(get_server().run())


if __name__ == "__main__":
    main()
