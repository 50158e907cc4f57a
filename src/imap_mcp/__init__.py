"""
IMAP MCP Server
===============

MCP server giving AI agents mailbox access across several IMAP accounts:
list, move, delete, bulk move, flag changes, and SMTP send.

Every tool call runs its own connect → login → select → command → logout
sequence and answers with a uniform report.
"""

__version__ = "1.0.0"

from src.imap_mcp.accounts import Account, AccountRegistry, SmtpSettings, load_registry
from src.imap_mcp.operations import MailboxOperations
from src.imap_mcp.server import ImapMCPServer, create_server, get_server
from src.imap_mcp.session import MailboxSession

__all__ = [
    "ImapMCPServer",
    "get_server",
    "create_server",
    "MailboxOperations",
    "MailboxSession",
    "Account",
    "AccountRegistry",
    "SmtpSettings",
    "load_registry",
]
