import sys
import os
from datetime import datetime
from typing import Any, Optional


# ═══════════════════════════════════════════════════════════════════════════════
# LOG FILTERING
# ═══════════════════════════════════════════════════════════════════════════════
# Only these scopes are shown at INFO level
# Everything else is gated behind DEBUG

INFO_SCOPES = {
    "TURN",         # Turn lifecycle and terminal status
    "APPLY",        # Directive batches reaching the overlay
    "TYPECHECK",    # Collaborator invocations
    "REPAIR",       # Repair cycles and budget
    "COMMIT",       # Overlay flushed to disk
    "SESSION",      # Registry start/end
}

# DEBUG-only scopes (hidden by default)
DEBUG_SCOPES = {
    "PARSER",
    "OVERLAY",
    "RETRY",
    "TRANSPORT",
}

# Check if DEBUG mode is enabled
DEBUG_MODE = os.getenv("PATCHLOOP_DEBUG", "false").lower() == "true"


def log(scope: str, message: str, data: Any = None, session_id: Optional[str] = None) -> None:
    """
    Unified logging function for patchloop.

    Only INFO_SCOPES are shown by default.
    Set PATCHLOOP_DEBUG=true to see all scopes.
    """
    if not DEBUG_MODE and scope not in INFO_SCOPES:
        return

    timestamp = datetime.now().strftime("%H:%M:%S")
    prefix = f"[{timestamp}] [{scope}]"

    if session_id:
        prefix += f" [{session_id[:8]}]"

    print(f"{prefix} {message}")

    if data:
        print(f"  Data: {data}")

    sys.stdout.flush()


def log_section(scope: str, title: str, session_id: Optional[str] = None) -> None:
    """
    Log a section header with visual separator.
    """
    timestamp = datetime.now().strftime("%H:%M:%S")
    print(f"\n{'='*60}")
    if session_id:
        print(f"[{timestamp}] [{scope}] [{session_id[:8]}] {title}")
    else:
        print(f"[{timestamp}] [{scope}] {title}")
    print(f"{'='*60}")
    sys.stdout.flush()
