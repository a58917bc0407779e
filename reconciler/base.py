"""
Stage Base Interface

This module defines the common interface that every reconciliation stage follows.
A stage wraps a pure computation with timing, logging and error classification so
callers always receive a StageResult instead of an exception.
"""

import json
import uuid
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from loguru import logger

from reconciler.errors import MalformedDiffError, ReconcilerError

InputT = TypeVar("InputT")
OutputT = TypeVar("OutputT")


class StageStatus(Enum):
    """Stage execution status values."""

    SUCCESS = "success"
    ERROR = "error"
    PARTIAL = "partial"


class StageErrorCode(Enum):
    """Standard stage error codes."""

    INVALID_INPUT = "INVALID_INPUT"
    MALFORMED_DIFF = "MALFORMED_DIFF"
    RECONCILIATION_ERROR = "RECONCILIATION_ERROR"
    PROCESSING_ERROR = "PROCESSING_ERROR"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    TIMEOUT = "TIMEOUT"


@dataclass
class StageMetrics:
    """Stage execution metrics."""

    processing_time_ms: int
    findings_processed: int | None = None
    comments_processed: int | None = None
    additional_metrics: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class StageResult(Generic[OutputT]):
    """Standard structure for stage execution results."""

    status: StageStatus
    output: OutputT | None = None
    error_code: StageErrorCode | None = None
    error_message: str | None = None
    metrics: StageMetrics | None = None
    warnings: list[str] = field(default_factory=list)
    retryable: bool = False

    def __post_init__(self) -> None:
        if self.status == StageStatus.ERROR and not self.error_code:
            raise ValueError("error_code is required when status is ERROR")

    @property
    def ok(self) -> bool:
        return self.status != StageStatus.ERROR

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        output = self.output
        return {
            "status": self.status.value,
            "output": output.to_dict() if hasattr(output, "to_dict") else output,
            "error_code": self.error_code.value if self.error_code else None,
            "error_message": self.error_message,
            "metrics": self.metrics.to_dict() if self.metrics else None,
            "warnings": list(self.warnings),
            "retryable": self.retryable,
        }

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), indent=2, default=str)

    @classmethod
    def success(
        cls,
        output: OutputT,
        metrics: StageMetrics | None = None,
        warnings: list[str] | None = None,
    ) -> "StageResult[OutputT]":
        """Create success result."""
        return cls(
            status=StageStatus.SUCCESS,
            output=output,
            metrics=metrics,
            warnings=warnings or [],
        )

    @classmethod
    def error(
        cls,
        error_code: StageErrorCode,
        error_message: str,
        metrics: StageMetrics | None = None,
        retryable: bool = False,
    ) -> "StageResult[OutputT]":
        """Create error result."""
        return cls(
            status=StageStatus.ERROR,
            error_code=error_code,
            error_message=error_message,
            metrics=metrics,
            retryable=retryable,
        )

    @classmethod
    def partial(
        cls,
        output: OutputT,
        metrics: StageMetrics | None = None,
        warnings: list[str] | None = None,
    ) -> "StageResult[OutputT]":
        """Create partial success result."""
        return cls(
            status=StageStatus.PARTIAL,
            output=output,
            metrics=metrics,
            warnings=warnings or [],
        )


class BaseStage(ABC, Generic[InputT, OutputT]):
    """
    Base class for reconciliation stages.

    Subclasses implement ``execute``; callers use ``run``, which never raises.
    """

    def __init__(self, stage_name: str) -> None:
        self.stage_name = stage_name
        self.stage_id = f"{stage_name}_{uuid.uuid4().hex[:8]}"
        self.start_time: datetime | None = None

    @abstractmethod
    def execute(self, input_data: InputT) -> StageResult[OutputT]:
        """
        Main method for stage execution.

        Args:
            input_data: Input data required for the stage

        Returns:
            Stage execution result
        """

    def _start_execution(self) -> None:
        self.start_time = datetime.now(UTC)

    def _end_execution(self) -> int:
        """Return elapsed processing time in milliseconds."""
        if not self.start_time:
            return 0

        duration = (datetime.now(UTC) - self.start_time).total_seconds() * 1000
        return int(duration)

    def _create_metrics(self, **kwargs: Any) -> StageMetrics:
        return StageMetrics(processing_time_ms=self._end_execution(), **kwargs)

    def run(self, input_data: InputT) -> StageResult[OutputT]:
        """
        Wrapper method for stage execution.

        Handles logging, error classification and metrics collection.

        Args:
            input_data: Input data required for the stage

        Returns:
            Stage execution result
        """
        try:
            self._start_execution()
            logger.info(f"Stage {self.stage_name} started: {self.stage_id}")

            result = self.execute(input_data)

            if not result.metrics:
                result.metrics = self._create_metrics()

            logger.info(
                f"Stage {self.stage_name} finished with status "
                f"{result.status.value}: {self.stage_id}"
            )
            logger.debug(f"Processing time: {result.metrics.processing_time_ms}ms")
            return result

        except Exception as e:
            error_code = self._classify_error(e)
            logger.error(f"Stage {self.stage_name} failed: {self.stage_id}")
            logger.error(f"Error code: {error_code.value}")
            logger.error(f"Error message: {e}")
            return StageResult.error(
                error_code=error_code,
                error_message=str(e),
                metrics=self._create_metrics(),
                retryable=self._is_retryable_error(error_code),
            )

    def _classify_error(self, error: Exception) -> StageErrorCode:
        """Classify error into standard error codes."""
        if isinstance(error, MalformedDiffError):
            return StageErrorCode.MALFORMED_DIFF
        elif isinstance(error, ReconcilerError):
            return StageErrorCode.RECONCILIATION_ERROR
        elif isinstance(error, ValueError | TypeError | KeyError):
            return StageErrorCode.INVALID_INPUT
        elif isinstance(error, FileNotFoundError):
            return StageErrorCode.FILE_NOT_FOUND
        elif isinstance(error, TimeoutError):
            return StageErrorCode.TIMEOUT
        else:
            return StageErrorCode.PROCESSING_ERROR

    def _is_retryable_error(self, error_code: StageErrorCode) -> bool:
        return error_code == StageErrorCode.TIMEOUT
