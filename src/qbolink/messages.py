"""
User-facing text for reason codes and errors.

The core only ever hands out ``ReasonCode`` values; this is the one place
they turn into sentences.
"""

from __future__ import annotations

from qbolink.config import _DEFAULT_MESSAGES, ErrorConfig
from qbolink.models import ReasonCode


def message_for(reason: ReasonCode, errors: ErrorConfig | None = None) -> str:
    """Display text for a reason code, honouring configured overrides."""
    configured = errors.messages if errors else {}
    return configured.get(reason.value) or _DEFAULT_MESSAGES.get(reason.value, "QuickBooks authentication required.")


def user_message(
    reason: ReasonCode,
    errors: ErrorConfig,
    detail: str | None = None,
) -> str:
    """The message to show an end user.

    Raw provider text (``detail``) is only revealed when detailed errors
    are switched on.
    """
    if detail and errors.show_detailed_errors:
        return detail
    return message_for(reason, errors)
