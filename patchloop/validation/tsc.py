# patchloop/validation/tsc.py
"""
TypeScript compiler collaborator.

Materializes base + overlay into a scratch directory, runs `tsc --noEmit`
there and turns its output into Problems. The project's node_modules is
symlinked rather than copied.
"""
import asyncio
import os
import re
import tempfile
from pathlib import Path
from typing import Dict, List, Optional

from patchloop.core.config import settings
from patchloop.core.exceptions import TypecheckCollaboratorUnavailable
from patchloop.core.logging import log
from patchloop.core.types import Problem, sort_problems
from patchloop.validation.typecheck import TypecheckRequest

# app/page.tsx(3,7): error TS2322: Type 'number' is not assignable to type 'string'.
TSC_LINE_PATTERN = re.compile(
    r"^(?P<file>.+?)\((?P<line>\d+),(?P<column>\d+)\): error TS(?P<code>\d+): (?P<message>.*)$"
)


def _snippet(files: Dict[str, str], path: str, line: int) -> Optional[str]:
    content = files.get(path)
    if content is None:
        return None
    lines = content.splitlines()
    if 1 <= line <= len(lines):
        return lines[line - 1]
    return None


def parse_tsc_output(output: str, files: Optional[Dict[str, str]] = None) -> List[Problem]:
    """
    Parse `tsc --pretty false` output.

    Indented lines following an error are folded into its message.
    """
    files = files or {}
    problems: List[Problem] = []
    current: Optional[dict] = None

    def flush():
        if current is not None:
            current["snippet"] = _snippet(files, current["file"], current["line"])
            problems.append(Problem(**current))

    for raw in output.splitlines():
        match = TSC_LINE_PATTERN.match(raw.strip())
        if match:
            flush()
            path = match.group("file").replace("\\", "/")
            if path.startswith("./"):
                path = path[2:]
            current = {
                "file": path,
                "line": int(match.group("line")),
                "column": int(match.group("column")),
                "code": int(match.group("code")),
                "message": match.group("message").strip(),
            }
        elif current is not None and raw.startswith((" ", "\t")) and raw.strip():
            current["message"] += "\n" + raw.strip()
        else:
            flush()
            current = None

    flush()
    return sort_problems(problems)


class TscTypechecker:
    """Runs the configured tsc command against a materialized copy of the tree."""

    def __init__(
        self,
        command: Optional[List[str]] = None,
        timeout: Optional[float] = None,
    ):
        self.command = list(command or settings.typecheck.command)
        self.timeout = settings.loop.typecheck_timeout if timeout is None else timeout

    async def check(self, request: TypecheckRequest) -> List[Problem]:
        with tempfile.TemporaryDirectory(prefix="patchloop_tsc_") as tmp:
            workdir = Path(tmp)
            files = await asyncio.to_thread(request.materialize_into, workdir)
            self._link_node_modules(request.project_root, workdir)

            log("TYPECHECK", f"🔍 Running {' '.join(self.command)} on {len(files)} files")
            returncode, output = await self._run(workdir)

        problems = parse_tsc_output(output, files)
        if returncode != 0 and not problems:
            tail = output.strip()[-500:]
            raise TypecheckCollaboratorUnavailable(f"tsc exited with {returncode} without diagnostics: {tail}")

        log("TYPECHECK", f"{'✅' if not problems else '❌'} tsc reported {len(problems)} problems")
        return problems

    def _link_node_modules(self, project_root: Optional[Path], workdir: Path) -> None:
        if project_root is None:
            return
        source = Path(project_root) / "node_modules"
        if source.is_dir():
            os.symlink(source.resolve(), workdir / "node_modules", target_is_directory=True)

    async def _run(self, cwd: Path):
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command,
                cwd=str(cwd),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError:
            raise TypecheckCollaboratorUnavailable(f"command not found: {self.command[0]}")

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            self._kill(proc)
            await asyncio.shield(proc.wait())
            raise TypecheckCollaboratorUnavailable(f"tsc timed out after {self.timeout}s")
        except asyncio.CancelledError:
            self._kill(proc)
            # Reap the child before the cancellation propagates
            await asyncio.shield(proc.wait())
            raise

        return proc.returncode, stdout.decode("utf-8", errors="replace")

    @staticmethod
    def _kill(proc) -> None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass  # already exited
