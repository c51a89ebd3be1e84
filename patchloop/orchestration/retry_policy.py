# patchloop/orchestration/retry_policy.py
"""
Brief retry for typecheck collaborator failures.

Rules:
- Compile problems are results, never retried here
- A crash or timeout of the collaborator itself is retried once
- Still failing after that -> TypecheckCollaboratorUnavailable

The collaborator's own failure is platform-level, not code-level; feeding it
to the generating agent as a repair digest would be wrong.
"""
import asyncio
from typing import Awaitable, Callable, List, Optional

from patchloop.core.config import settings
from patchloop.core.exceptions import TypecheckCollaboratorUnavailable
from patchloop.core.logging import log
from patchloop.core.types import Problem


class RetryPolicy:
    """
    Retry policy for typecheck collaborator failures.
    """

    def __init__(
        self,
        max_retries: Optional[int] = None,
        timeout: Optional[float] = None,
        delay: float = 0.0,
    ):
        self.max_retries = settings.loop.typecheck_retries if max_retries is None else max_retries
        self.timeout = settings.loop.typecheck_timeout if timeout is None else timeout
        self.delay = delay

    async def run(
        self,
        check_fn: Callable[[], Awaitable[List[Problem]]],
        label: str = "typecheck",
    ) -> List[Problem]:
        """
        Run check_fn, retrying collaborator failures.

        Args:
            check_fn: Zero-argument coroutine factory invoking the collaborator
            label: Name used in log lines

        Returns:
            Problems reported by the collaborator (possibly empty)

        Raises:
            TypecheckCollaboratorUnavailable: after max_retries + 1 failures
        """
        last_reason = ""

        for attempt in range(self.max_retries + 1):  # +1 for initial attempt
            if attempt > 0:
                log("RETRY", f"🔄 Retry {attempt}/{self.max_retries} for {label}")
                if self.delay:
                    await asyncio.sleep(self.delay)

            try:
                if self.timeout:
                    return await asyncio.wait_for(check_fn(), timeout=self.timeout)
                return await check_fn()
            except asyncio.TimeoutError:
                last_reason = f"timed out after {self.timeout}s"
            except TypecheckCollaboratorUnavailable as e:
                last_reason = e.reason
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_reason = f"{type(e).__name__}: {e}"

            log("TYPECHECK", f"⚠️ {label} collaborator failed (attempt {attempt + 1}): {last_reason}")

        log("RETRY", f"🔒 Max retries reached for {label} - collaborator unavailable")
        raise TypecheckCollaboratorUnavailable(last_reason, attempts=self.max_retries + 1)
