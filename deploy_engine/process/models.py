# deploy_engine/process/models.py
"""Request/response models for external process execution."""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional


class ProcessOutputStream(Enum):
    """Stream a process output line was produced on."""
    STDOUT = "STDOUT"
    STDERR = "STDERR"


class ExecutionMode(Enum):
    """How a waited-for process publishes its output."""
    CAPTURE = "CAPTURE"
    REALTIME = "REALTIME"


OutputCallback = Callable[[str, ProcessOutputStream], None]


@dataclass
class ProcessExecutionOptions:
    """Describes an external command to run."""
    program: str
    arguments: List[str] = field(default_factory=list)
    working_directory: Optional[str] = None

    # Environment variables added to (or overriding) the current environment
    environment: Optional[Dict[str, str]] = None

    # Seconds; None or <= 0 disables the timeout
    timeout: Optional[float] = None
    cancellation: Optional[threading.Event] = None

    # Realtime mode only
    on_output: Optional[OutputCallback] = None
    mirror_output_to_logger: bool = False
    suppress_errors: bool = False


@dataclass(frozen=True)
class ProcessExecutionResult:
    """Outcome of a waited-for execution. Produced once per request."""
    started: bool
    started_at: datetime
    finished_at: Optional[datetime] = None
    process_id: Optional[int] = None
    exit_code: Optional[int] = None
    timed_out: bool = False
    canceled: bool = False
    standard_output: str = ""
    standard_error: str = ""

    @property
    def succeeded(self) -> bool:
        return (
            self.started
            and not self.timed_out
            and not self.canceled
            and self.exit_code == 0
        )


@dataclass(frozen=True)
class ProcessLaunchResult:
    """Outcome of a fire-and-forget launch."""
    started: bool
    started_at: datetime
    process_id: Optional[int] = None
    error_message: Optional[str] = None
