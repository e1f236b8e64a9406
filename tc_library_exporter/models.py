"""
Shared data models, enumerations, and typed structures for the exporter.

Provides:
- ``ExitCode``, the fixed set of process exit codes.  Exactly one is
  produced per run.
- ``ErrorLevel``, mirroring EnvDTE's ``vsBuildErrorLevel``.
- Dataclasses for the run configuration and for build diagnostics.
- ``RunnerError``, raised by orchestration steps to short-circuit to a
  specific exit code.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Optional

logger = logging.getLogger(__name__)


# ===================================================================
# Enumerations
# ===================================================================

class ExitCode(IntEnum):
    """Process exit codes.  One per terminal outcome of a run."""
    SUCCESS = 0
    ARGUMENT_ERROR = 1
    SOLUTION_PATH_NOT_PROVIDED = 2
    SOLUTION_PATH_NOT_FOUND = 3
    TWINCAT_PROJECT_FILE_NOT_FOUND = 4
    TWINCAT_VERSION_NOT_FOUND = 5
    ERROR_LOADING_DTE = 6
    ERROR_LOADING_SOLUTION = 7
    ERROR_FINDING_VS_VERSION = 8
    NO_PLC_PROJECT = 9
    BUILD_ERROR = 10
    CHECK_ALL_OBJECTS_ERROR = 11
    TIMEOUT = 12
    USER_INTERRUPT = 13
    LIBRARY_EXPORT_ERROR = 14


class ErrorLevel(IntEnum):
    """Severity of an Error List entry (EnvDTE ``vsBuildErrorLevel``)."""
    LOW = 0
    MEDIUM = 1
    HIGH = 2


# ===================================================================
# Dataclasses
# ===================================================================

@dataclass
class RunnerConfig:
    """Everything a single run needs, built once from the command line."""
    solution_path: Optional[str] = None
    plc_project_name: Optional[str] = None
    library_path: Optional[str] = None
    forced_tc_version: Optional[str] = None
    timeout_minutes: Optional[float] = None
    debug: bool = False
    task_name: Optional[str] = None
    compiler_defines: list[str] = field(default_factory=list)
    install_library: bool = False

    @property
    def timeout_seconds(self) -> Optional[float]:
        if not self.timeout_minutes:
            return None
        return self.timeout_minutes * 60.0


@dataclass
class BuildMessage:
    """One entry of the Visual Studio Error List."""
    level: ErrorLevel
    description: str = ""
    file_name: str = ""
    line: Optional[int] = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "level": self.level.name,
            "description": self.description,
            "file_name": self.file_name,
        }
        if self.line is not None:
            d["line"] = self.line
        return d


@dataclass
class BuildDiagnostics:
    """Build messages split by severity.  Low-level messages are dropped."""
    errors: list[BuildMessage] = field(default_factory=list)
    warnings: list[BuildMessage] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def warning_count(self) -> int:
        return len(self.warnings)

    @classmethod
    def classify(cls, messages) -> 'BuildDiagnostics':
        """Sort Error List entries into errors (high) and warnings (medium)."""
        diagnostics = cls()
        for message in messages:
            if message.level == ErrorLevel.HIGH:
                diagnostics.errors.append(message)
            elif message.level == ErrorLevel.MEDIUM:
                diagnostics.warnings.append(message)
        return diagnostics

    def to_dict(self) -> dict:
        return {
            "error_count": self.error_count,
            "warning_count": self.warning_count,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


# ===================================================================
# Errors
# ===================================================================

class RunnerError(Exception):
    """A step of the run failed and the process must exit with *exit_code*."""

    def __init__(self, exit_code: ExitCode, message: str):
        super().__init__(message)
        self.exit_code = exit_code
        self.message = message

    def __str__(self) -> str:
        return f"{self.message} (exit code {int(self.exit_code)}: {self.exit_code.name})"
