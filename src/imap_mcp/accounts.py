"""
Account Registry
================

Per-account IMAP/SMTP connection parameters loaded from the environment
(optionally via a .env file).

INV-ACCOUNTS-01: Accounts missing user or password are invisible.
Registry contents are read-only after load.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import dotenv_values

from contracts import ConfigurationError, NotConfiguredError

# Built-in account keys with their display name and default IMAP host.
DEFAULT_ACCOUNTS: dict[str, tuple[str, str]] = {
    "onecom": ("one.com", "imap.one.com"),
    "gmx": ("GMX", "imap.gmx.net"),
    "gmail": ("Gmail", "imap.gmail.com"),
}

SMTP_SECURITY_MODES = ("ssl", "starttls", "none")


@dataclass(frozen=True)
class SmtpSettings:
    """SMTP submission endpoint for an account."""

    host: str
    port: int = 465
    security: str = "ssl"


@dataclass(frozen=True)
class Account:
    """Connection parameters for one mail account."""

    key: str
    name: str
    host: str
    username: str | None = None
    password: str | None = field(default=None, repr=False)
    port: int = 993
    use_ssl: bool = True
    delimiter: str | None = None
    smtp: SmtpSettings | None = None
    from_name: str | None = None

    @property
    def configured(self) -> bool:
        """An account is usable only with both a user and a password."""
        return bool(self.username) and bool(self.password)


class AccountRegistry:
    """Immutable lookup of accounts by key."""

    def __init__(self, accounts: list[Account]) -> None:
        self._accounts: dict[str, Account] = {a.key: a for a in accounts}

    def resolve(self, key: str) -> Account:
        """
        Return the configured account for key.

        ERRORS:
        - NotConfiguredError: Unknown key, or user/password missing
        """
        account = self._accounts.get(key)
        if account is None or not account.configured:
            raise NotConfiguredError(f"Account '{key}' not configured")
        return account

    def configured(self) -> list[Account]:
        """Fully configured accounts, in definition order."""
        return [a for a in self._accounts.values() if a.configured]

    def __contains__(self, key: object) -> bool:
        return key in self._accounts


def _parse_port(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        port = int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e
    if not 0 < port < 65536:
        raise ConfigurationError(f"{name} out of range: {port}")
    return port


def _load_smtp(environ: Mapping[str, str], prefix: str) -> SmtpSettings | None:
    host = environ.get(f"SMTP_{prefix}_HOST")
    if not host:
        return None
    security = environ.get(f"SMTP_{prefix}_SECURITY", "ssl").lower()
    if security not in SMTP_SECURITY_MODES:
        raise ConfigurationError(
            f"SMTP_{prefix}_SECURITY must be one of {', '.join(SMTP_SECURITY_MODES)}"
        )
    return SmtpSettings(
        host=host,
        port=_parse_port(environ, f"SMTP_{prefix}_PORT", 465),
        security=security,
    )


def load_account(key: str, environ: Mapping[str, str]) -> Account:
    """Build one account from IMAP_<KEY>_* and SMTP_<KEY>_* variables."""
    prefix = key.upper()
    default_name, default_host = DEFAULT_ACCOUNTS.get(key, (key, ""))
    host = environ.get(f"IMAP_{prefix}_HOST") or default_host
    if not host:
        raise ConfigurationError(f"IMAP_{prefix}_HOST is required for account '{key}'")

    return Account(
        key=key,
        name=environ.get(f"IMAP_{prefix}_NAME") or default_name,
        host=host,
        port=_parse_port(environ, f"IMAP_{prefix}_PORT", 993),
        username=environ.get(f"IMAP_{prefix}_USER") or None,
        password=environ.get(f"IMAP_{prefix}_PASSWORD") or None,
        use_ssl=environ.get(f"IMAP_{prefix}_TLS", "true").lower() != "false",
        delimiter=environ.get(f"IMAP_{prefix}_DELIMITER") or None,
        smtp=_load_smtp(environ, prefix),
        from_name=environ.get(f"SMTP_{prefix}_FROM_NAME") or None,
    )


def load_registry(
    environ: Mapping[str, str] | None = None,
    env_file: str | Path | None = ".env",
) -> AccountRegistry:
    """
    Load all accounts.

    Values from env_file fill in anything the process environment lacks;
    real environment variables always win. Pass environ explicitly to
    bypass both (tests do this).
    """
    if environ is None:
        merged: dict[str, str] = {}
        if env_file is not None and Path(env_file).is_file():
            merged.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
        merged.update(os.environ)
        environ = merged

    keys_raw = environ.get("IMAP_ACCOUNTS")
    if keys_raw:
        keys = [k.strip() for k in keys_raw.split(",") if k.strip()]
    else:
        keys = list(DEFAULT_ACCOUNTS)

    return AccountRegistry([load_account(key, environ) for key in keys])
