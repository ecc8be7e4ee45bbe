from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, List


@dataclass
class AppError(Exception):
    """Base class for application-level errors (outside the paging core)."""

    message: str
    http_status: int = 500
    code: str = "internal_error"
    retryable: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)
    details: Optional[List[str]] = None

    def __str__(self) -> str:
        return self.message


# 4xx
@dataclass
class BadRequestError(AppError):
    http_status: int = 400
    code: str = "bad_request"


@dataclass
class DbNotFound(BadRequestError):
    code: str = "db_not_found"


# 5xx-ish
@dataclass
class DependencyError(AppError):
    http_status: int = 503
    code: str = "dependency_error"
    retryable: bool = True


@dataclass
class ConfigError(AppError):
    http_status: int = 500
    code: str = "config_error"
