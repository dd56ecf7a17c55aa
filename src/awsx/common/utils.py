"""Utility functions for awsx."""

import os
import re
import socket
import tempfile
import time
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

# Port range constants
MIN_PORT = 1
MAX_PORT = 65535

LOOPBACK = "127.0.0.1"


def validate_port(port: int, port_name: str = "Port") -> None:
    """Validate port number range.

    Args:
        port: Port number to validate
        port_name: Name of the port for error messages

    Raises:
        ValueError: If port is not in valid range (1-65535)
    """
    if not isinstance(port, int) or not (MIN_PORT <= port <= MAX_PORT):
        raise ValueError(f"{port_name} must be between {MIN_PORT} and {MAX_PORT}")


def validate_non_empty_string(value: str, field_name: str) -> str:
    """Validate that a string is not empty or only whitespace.

    Args:
        value: String value to validate
        field_name: Name of the field for error messages

    Returns:
        Stripped string value

    Raises:
        ValueError: If string is empty or only whitespace
    """
    if not value or not value.strip():
        raise ValueError(f"{field_name} cannot be empty")
    return value.strip()


def is_url(target: str) -> bool:
    """Return True if target looks like a URL rather than a name pattern."""
    return bool(re.match(r"^[a-zA-Z][a-zA-Z0-9+.-]*://", target.strip()))


def strip_url_to_host(target: str) -> str:
    """Reduce a URL or host[:port][/path] string to its bare hostname.

    >>> strip_url_to_host("https://app.internal.example.com:8443/path")
    'app.internal.example.com'
    """
    target = target.strip()
    if not is_url(target):
        target = f"//{target}"
    host = urlsplit(target).hostname
    return host or ""


def default_port_for_url(target: str, http_port: int = 80, https_port: int = 443) -> int:
    """Return the explicit port of a URL or the scheme's default port."""
    parts = urlsplit(target.strip() if is_url(target) else f"//{target.strip()}")
    try:
        if parts.port:
            return parts.port
    except ValueError:
        pass
    return https_port if parts.scheme == "https" else http_port


def port_open(port: int, host: str = LOOPBACK, timeout: float = 1.0) -> bool:
    """Check whether something accepts TCP connections on host:port."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def wait_for_port(
    port: int,
    timeout: float,
    interval: float = 0.5,
    connect_timeout: float = 1.0,
    alive: Any = None,
) -> bool:
    """Poll a loopback port until it accepts connections.

    Args:
        port: Local port to poll
        timeout: Total time to wait in seconds
        interval: Delay between attempts
        connect_timeout: Timeout of each connection attempt
        alive: Optional callable; polling stops early once it returns False

    Returns:
        True if the port opened before the timeout
    """
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if port_open(port, timeout=connect_timeout):
            return True
        if alive is not None and not alive():
            return False
        time.sleep(interval)
    return False


def atomic_write(path: Path, content: str, mode: int | None = None) -> None:
    """Write content to path through a temp file in the same directory.

    Raises:
        OSError: If the directory is not writable or the rename fails
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
        if mode is not None:
            os.chmod(temp_path, mode)
        elif path.exists():
            os.chmod(temp_path, path.stat().st_mode & 0o777)
        else:
            os.chmod(temp_path, 0o644)
        os.replace(temp_path, path)
    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


def mask_sensitive_data(
    value: str | None, mask_char: str = "*", show_chars: int = 4
) -> str:
    """Mask sensitive data for logging while preserving some characters for debugging.

    Args:
        value: Sensitive string to mask (e.g., password, SAML assertion)
        mask_char: Character to use for masking
        show_chars: Number of characters to show at the end

    Returns:
        Masked string safe for logging
    """
    if not value:
        return "<None>"

    if len(value) <= show_chars:
        return mask_char * len(value)

    masked_length = len(value) - show_chars
    return mask_char * masked_length + value[-show_chars:]


def sanitize_log_data(data: dict[str, Any]) -> dict[str, Any]:
    """Sanitize dictionary data for safe logging by masking sensitive fields.

    Args:
        data: Dictionary potentially containing sensitive data

    Returns:
        Sanitized dictionary safe for logging
    """
    sensitive_fields = {
        "token",
        "password",
        "secret",
        "saml",
        "session_token",
        "access_key",
    }

    sanitized = {}
    for key, value in data.items():
        if any(sensitive_field in key.lower() for sensitive_field in sensitive_fields):
            sanitized[key] = mask_sensitive_data(str(value) if value else None)
        else:
            sanitized[key] = value

    return sanitized
