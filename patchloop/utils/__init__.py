"""
Utilities - path safety and the streaming directive parser.
"""
from .path_utils import normalize, get_project_path, is_within_root
from .parser import IncrementalTagParser, strip_code_fence

__all__ = [
    "normalize",
    "get_project_path",
    "is_within_root",
    "IncrementalTagParser",
    "strip_code_fence",
]
