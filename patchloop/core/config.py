# patchloop/core/config.py
"""
Application configuration - single source of truth for all settings.
"""
import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import List
from dotenv import load_dotenv

load_dotenv()


@dataclass
class LoopSettings:
    """Repair loop configuration."""
    max_attempts: int = field(default_factory=lambda: int(os.getenv("REPAIR_MAX_ATTEMPTS", "2")))
    typecheck_timeout: float = field(default_factory=lambda: float(os.getenv("TYPECHECK_TIMEOUT", "120")))
    # Collaborator crashes/timeouts are retried this many times before the turn fails
    typecheck_retries: int = field(default_factory=lambda: int(os.getenv("TYPECHECK_RETRIES", "1")))
    digest_max_problems: int = field(default_factory=lambda: int(os.getenv("DIGEST_MAX_PROBLEMS", "50")))


@dataclass
class ParserSettings:
    """Directive tag configuration."""
    # <pl-write>, <pl-rename>, <pl-delete>, <pl-add-dependency>
    tag_prefix: str = field(default_factory=lambda: os.getenv("DIRECTIVE_TAG_PREFIX", "pl"))


@dataclass
class TypecheckSettings:
    """External typechecker configuration."""
    command: List[str] = field(default_factory=lambda: os.getenv(
        "TSC_COMMAND", "npx tsc --noEmit --pretty false"
    ).split())
    # Directories never copied into the materialized tree
    ignored_dirs: List[str] = field(default_factory=lambda: ["node_modules", ".git", "dist", ".next"])


@dataclass
class PathSettings:
    """Path configuration."""
    workspaces_dir: Path = field(default_factory=lambda: Path(
        os.getenv("WORKSPACES_DIR") or str(Path.cwd() / "workspaces")
    ))


@dataclass
class Settings:
    """Main application settings."""
    loop: LoopSettings = field(default_factory=LoopSettings)
    parser: ParserSettings = field(default_factory=ParserSettings)
    typecheck: TypecheckSettings = field(default_factory=TypecheckSettings)
    paths: PathSettings = field(default_factory=PathSettings)
    port: int = field(default_factory=lambda: int(os.getenv("PORT", 8000)))
    debug: bool = field(default_factory=lambda: os.getenv("DEBUG", "false").lower() == "true")

    def ensure_directories(self):
        """Ensure required directories exist."""
        self.paths.workspaces_dir.mkdir(parents=True, exist_ok=True)


# Singleton instance
settings = Settings()
