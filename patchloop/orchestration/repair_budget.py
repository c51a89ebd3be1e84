# patchloop/orchestration/repair_budget.py
"""
Repair Budget Controller

Prevents runaway repair by enforcing hard limits on:
- repair cycles (digest fed back to the generating agent)
- typecheck checking phases

With max_attempts = N the loop may check at most N + 1 times: the initial
check plus one per repair cycle. Owned by a single controller; never shared
across turns.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from patchloop.core.logging import log


@dataclass
class RepairBudget:
    """
    Per-turn budget for repair operations.

    When exhausted, the turn fails with diagnostics attached.
    """

    max_attempts: int = 2

    # Usage counters
    attempts_used: int = 0
    checks_used: int = 0

    # Tracking
    started_at: Optional[str] = None
    call_log: List[Dict] = field(default_factory=list)

    def __post_init__(self):
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        if self.started_at is None:
            self.started_at = datetime.now(timezone.utc).isoformat()

    @property
    def checks_max(self) -> int:
        return self.max_attempts + 1

    # ─────────────────────────────────────────────────────────
    # Remaining budget (read-only)
    # ─────────────────────────────────────────────────────────

    @property
    def attempts_remaining(self) -> int:
        return max(0, self.max_attempts - self.attempts_used)

    @property
    def checks_remaining(self) -> int:
        return max(0, self.checks_max - self.checks_used)

    def can_repair(self) -> bool:
        return self.attempts_remaining > 0

    def is_exhausted(self) -> bool:
        return not self.can_repair()

    # ─────────────────────────────────────────────────────────
    # Budget consumption (write)
    # ─────────────────────────────────────────────────────────

    def use_repair(self, problem_count: int = 0) -> bool:
        if self.attempts_used >= self.max_attempts:
            log("REPAIR", f"🛑 Repair cycle DENIED - budget exhausted ({self.attempts_used}/{self.max_attempts})")
            return False

        self.attempts_used += 1
        self.call_log.append({
            "type": "repair",
            "problems": problem_count,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })
        log("REPAIR", f"🔧 Repair cycle {self.attempts_used}/{self.max_attempts} ({problem_count} problems)")
        return True

    def use_check(self) -> bool:
        if self.checks_used >= self.checks_max:
            log("REPAIR", f"🛑 Typecheck DENIED - {self.checks_used}/{self.checks_max} already run")
            return False

        self.checks_used += 1
        self.call_log.append({
            "type": "check",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })
        return True

    # ─────────────────────────────────────────────────────────
    # Status & Diagnostics
    # ─────────────────────────────────────────────────────────

    def get_status(self) -> Dict:
        return {
            "attempts": {
                "used": self.attempts_used,
                "max": self.max_attempts,
                "remaining": self.attempts_remaining,
            },
            "checks": {
                "used": self.checks_used,
                "max": self.checks_max,
                "remaining": self.checks_remaining,
            },
            "exhausted": self.is_exhausted(),
            "started_at": self.started_at,
            "total_operations": len(self.call_log),
        }

    def get_exhaustion_diagnostic(self, unresolved: int) -> str:
        status = self.get_status()
        lines = [
            "═══════════════════════════════════════════════════════",
            "🛑 REPAIR BUDGET EXHAUSTED",
            "═══════════════════════════════════════════════════════",
            f"Repair cycles: {status['attempts']['used']}/{status['attempts']['max']}",
            f"Typechecks:    {status['checks']['used']}/{status['checks']['max']}",
            f"Unresolved problems: {unresolved}",
            "Overlay kept uncommitted for manual follow-up.",
            "═══════════════════════════════════════════════════════",
        ]
        return "\n".join(lines)
