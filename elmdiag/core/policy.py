from __future__ import annotations

import logging
import re

from elmdiag.core.channel import CommandChannel


log = logging.getLogger(__name__)

TRANSIENT_TOKENS = ("NO DATA", "?")

# Progress lines the adapter prints around the actual answer.
STATUS_LINES = ("SEARCHING...", "STOPPED", "BUS INIT: ...OK", "BUS INIT:...OK")

_DATA_LINE_RE = re.compile(r"^([0-9A-F]:)?[0-9A-F]+$")


def is_transient(response: str) -> bool:
    """True for replies that say "nothing this time" rather than "broken".

    Status lines are ignored. A reply is transient when nothing is left, or
    when no data line is left and one of the lines is a transient token.
    """

    lines: list[str] = []
    for line in (response or "").upper().splitlines():
        text = " ".join(line.split())
        for status in STATUS_LINES:
            text = text.replace(status, "")
        text = text.strip()
        if text:
            lines.append(text)
    if not lines:
        return True
    if any(_DATA_LINE_RE.match(line.replace(" ", "")) for line in lines):
        return False
    return any(line in TRANSIENT_TOKENS for line in lines)


async def query(channel: CommandChannel, command: str, timeout_ms: int, *, retries: int = 1) -> str | None:
    """Execute `command`, re-issuing it while the reply is transient.

    Returns the reply text, or None when it is still transient after
    `retries` extra attempts. Timeouts, transport errors and busy-channel
    rejections propagate untouched.
    """

    attempts = 1 + max(0, int(retries))
    for attempt in range(1, attempts + 1):
        response = await channel.execute(command, timeout_ms)
        if not is_transient(response):
            return response
        log.debug("Transient reply", extra={"cmd": command, "attempt": attempt, "reply": response})
    log.debug("No data", extra={"cmd": command, "attempts": attempts})
    return None
