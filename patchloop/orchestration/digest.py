# patchloop/orchestration/digest.py
"""
Repair digest - compact rendering of typechecker problems for the
generating agent's next turn.
"""
from typing import List, Optional

from patchloop.core.config import settings
from patchloop.core.types import Problem, sort_problems


def render_problem(index: int, problem: Problem) -> str:
    lines = [f"{index}. {problem.render()}"]
    if problem.snippet:
        lines.append("```")
        lines.append(problem.snippet.rstrip("\n"))
        lines.append("```")
    return "\n".join(lines)


def build_repair_digest(problems: List[Problem], max_problems: Optional[int] = None) -> str:
    """
    One line per problem (`path:line:col - message (code)`), each followed by
    its source snippet when the typechecker supplied one.
    """
    limit = settings.loop.digest_max_problems if max_problems is None else max_problems
    ordered = sort_problems(problems)
    shown = ordered[:limit] if limit > 0 else ordered
    noun = "error" if len(ordered) == 1 else "errors"

    parts = [f"Fix these {len(ordered)} TypeScript compile-time {noun}:", ""]
    for i, problem in enumerate(shown, start=1):
        parts.append(render_problem(i, problem))
        parts.append("")

    hidden = len(ordered) - len(shown)
    if hidden > 0:
        parts.append(f"...and {hidden} more not shown.")
        parts.append("")

    parts.append("Fix every error above with the smallest change that works. Do not touch unrelated files.")
    return "\n".join(parts)
