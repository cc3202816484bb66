from __future__ import annotations

import logging
import re
from typing import Any
from urllib.parse import urlsplit, urlunsplit

URL_TOKEN_RE = re.compile(r"https?://[^\s\"'<>]+", re.IGNORECASE)
SECRET_ASSIGNMENT_RE = re.compile(
    r"(?i)((?:api[-_]?key|access[-_]?token|private[-_]?key)\s*[:=]\s*)([^\s,;\"'&]+)"
)
SECRET_QUERY_RE = re.compile(r"(?i)([?&](?:api[-_]?key|access[-_]?token)=)([^&#\s]+)")
# 32-byte hex blobs are private keys; tx hashes are logged under explicit fields only.
PRIVATE_KEY_RE = re.compile(r"(?<![0-9a-fA-Fx])(?:0x)?[0-9a-fA-F]{64}(?![0-9a-fA-F])")
SECRET_FIELD_NAMES = {"private_key", "delegatee_private_key", "api_key", "access_token", "auth_sig"}


def _sanitize_url_token(token: str) -> str:
    candidate = token
    trailing = ""
    while candidate and candidate[-1] in ".,);]}":
        trailing = candidate[-1] + trailing
        candidate = candidate[:-1]

    parsed = urlsplit(candidate)
    if parsed.scheme.lower() in {"http", "https"} and parsed.netloc:
        candidate = urlunsplit((parsed.scheme, parsed.netloc, parsed.path, "", ""))
    return f"{candidate}{trailing}"


def sanitize_text(value: str, *, mask_hex_keys: bool = False) -> str:
    masked = URL_TOKEN_RE.sub(lambda match: _sanitize_url_token(match.group(0)), value)
    masked = SECRET_QUERY_RE.sub(r"\1***", masked)
    masked = SECRET_ASSIGNMENT_RE.sub(r"\1***", masked)
    if mask_hex_keys:
        masked = PRIVATE_KEY_RE.sub("***", masked)
    return masked


def sanitize_value(value: Any, *, key: str | None = None) -> Any:
    if key is not None and key.lower() in SECRET_FIELD_NAMES and value:
        return "***"
    if isinstance(value, str):
        return sanitize_text(value)
    if isinstance(value, dict):
        return {child_key: sanitize_value(child, key=str(child_key)) for child_key, child in value.items()}
    if isinstance(value, list):
        return [sanitize_value(item) for item in value]
    if isinstance(value, tuple):
        return tuple(sanitize_value(item) for item in value)
    return value


def log_event(
    logger: logging.Logger,
    *,
    level: str,
    event: str,
    message: str,
    **fields: Any,
) -> None:
    extra = {"event": sanitize_value(event)}
    extra.update({key: sanitize_value(value, key=key) for key, value in fields.items()})
    safe_message = sanitize_text(message, mask_hex_keys=True)

    if level == "debug":
        logger.debug(safe_message, extra=extra)
        return
    if level == "info":
        logger.info(safe_message, extra=extra)
        return
    if level == "warning":
        logger.warning(safe_message, extra=extra)
        return
    if level == "error":
        logger.error(safe_message, extra=extra)
        return
    if level == "critical":
        logger.critical(safe_message, extra=extra)
        return
    if level == "exception":
        logger.exception(safe_message, extra=extra)
        return

    logger.log(logging.INFO, safe_message, extra=extra)
