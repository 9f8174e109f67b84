"""Dangerous shell command detection for the Bash tool."""

from __future__ import annotations

import re

_DANGEROUS: tuple[tuple[re.Pattern[str], str], ...] = tuple(
    (re.compile(pattern, re.IGNORECASE), reason)
    for pattern, reason in (
        (r"\brm\s+(-[a-z]*r[a-z]*f|-[a-z]*f[a-z]*r)\b", "recursive force delete"),
        (r"\bsudo\b", "runs with elevated privileges"),
        (r"\bmkfs(\.\w+)?\b", "formats a filesystem"),
        (r"\bdd\s+.*\bof=/dev/", "writes directly to a device"),
        (r">\s*/dev/sd[a-z]", "overwrites a block device"),
        (r"\bchmod\s+(-R\s+)?0?777\b", "makes files world-writable"),
        (r"\bgit\s+push\s+.*(--force|-f)\b", "force-pushes git history"),
        (r"\bgit\s+reset\s+--hard\b", "discards uncommitted work"),
        (r"\b(curl|wget)\b[^|]*\|\s*(ba|z)?sh\b", "pipes a download into a shell"),
        (r":\(\)\s*\{\s*:\|:&\s*\};:", "fork bomb"),
        (r"\b(shutdown|reboot|halt)\b", "stops the machine"),
    )
)


def dangerous_reason(command: str) -> str | None:
    """Why ``command`` needs approval, or None when it looks routine."""
    for pattern, reason in _DANGEROUS:
        if pattern.search(command):
            return reason
    return None
