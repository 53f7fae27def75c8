"""Shared result envelope.

Every queue operation returns a ``ServiceResult`` instead of raising, so the
HTTP layer, the autopilot and the CLI worker all see the same shape.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional


class ResultStatus(str, Enum):
    ok = "ok"
    created = "created"
    already_member = "already_member"
    not_found = "not_found"
    validation = "validation"
    internal = "internal"


HTTP_STATUS = {
    ResultStatus.ok: 200,
    ResultStatus.created: 201,
    ResultStatus.already_member: 200,
    ResultStatus.not_found: 404,
    ResultStatus.validation: 400,
    ResultStatus.internal: 500,
}


class QueueError(Exception):
    """Expected failure inside an operation; becomes a failed result."""

    def __init__(self, status: ResultStatus, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.message = message
        self.data = data


@dataclass(frozen=True)
class ServiceResult:
    success: bool
    message: str
    data: Any = None
    status: ResultStatus = ResultStatus.ok

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.status]

    @classmethod
    def ok(cls, message: str, data: Any = None, status: ResultStatus = ResultStatus.ok) -> "ServiceResult":
        return cls(True, message, data, status)

    @classmethod
    def failure(cls, message: str, status: ResultStatus = ResultStatus.validation, data: Any = None) -> "ServiceResult":
        return cls(False, message, data, status)

    def to_message(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "data": self.data,
            "statusCode": self.status_code,
        }


def service_boundary(failure_message: str, logger: Optional[logging.Logger] = None) -> Callable:
    """Turn anything an operation raises into a failed ``ServiceResult``."""
    log = logger or logging.getLogger(__name__)

    def decorator(func: Callable[..., ServiceResult]) -> Callable[..., ServiceResult]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> ServiceResult:
            try:
                return func(*args, **kwargs)
            except QueueError as e:
                return ServiceResult.failure(e.message, e.status, e.data)
            except Exception:
                log.exception(failure_message)
                return ServiceResult.failure(failure_message, ResultStatus.internal)

        return wrapper

    return decorator
