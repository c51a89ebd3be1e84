"""
Validation - typecheck collaborator contract and the tsc implementation.
"""
from .typecheck import TypecheckRequest, TypecheckCollaborator
from .tsc import TscTypechecker, parse_tsc_output

__all__ = [
    "TypecheckRequest",
    "TypecheckCollaborator",
    "TscTypechecker",
    "parse_tsc_output",
]
