"""
Operation results

Store, provider and messenger calls report business outcomes as values
instead of raising. Callers branch on `success` and `error.code`.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorCode(str, Enum):
    """
    Failure codes shared by stores and integrations

    - NOT_FOUND: row or remote resource does not exist
    - ALREADY_EXISTS: a live member already holds the identity
    - INVALID_TRANSITION: status change not allowed by the lifecycle
    - RACE_CONDITION: another writer changed the row first
    - STORAGE_ERROR: database failure
    - INVALID_PAYLOAD: malformed provider data
    - PROVIDER_ERROR: payment provider unreachable or failing
    - USER_BLOCKED_BOT: member blocked private messages from the bot
    - USER_NOT_IN_GROUP: member already left the chat
    - BOT_NO_PERMISSION: bot lacks admin rights in the chat
    - CONFIG_MISSING: required chat/token setting is absent
    - TELEGRAM_ERROR: any other Bot API failure
    - GROUP_NOT_FOUND: configured tenant does not exist
    """
    NOT_FOUND = "NOT_FOUND"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    RACE_CONDITION = "RACE_CONDITION"
    STORAGE_ERROR = "STORAGE_ERROR"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    USER_BLOCKED_BOT = "USER_BLOCKED_BOT"
    USER_NOT_IN_GROUP = "USER_NOT_IN_GROUP"
    BOT_NO_PERMISSION = "BOT_NO_PERMISSION"
    CONFIG_MISSING = "CONFIG_MISSING"
    TELEGRAM_ERROR = "TELEGRAM_ERROR"
    GROUP_NOT_FOUND = "GROUP_NOT_FOUND"


@dataclass(frozen=True)
class ServiceError:
    code: ErrorCode
    message: str


@dataclass(frozen=True)
class Result(Generic[T]):
    success: bool
    data: T | None = None
    error: ServiceError | None = None

    @property
    def code(self) -> ErrorCode | None:
        return self.error.code if self.error else None

    @property
    def message(self) -> str:
        return self.error.message if self.error else ""


def ok(data: T | None = None) -> Result[T]:
    return Result(success=True, data=data)


def fail(code: ErrorCode, message: str) -> Result:
    return Result(success=False, error=ServiceError(code=code, message=message))
