"""
Error taxonomy shared by repositories, services and routers.

Every remote failure is handled where it happens: nothing here retries or
queues an operation for later.
"""
import logging
from contextlib import contextmanager
from typing import Iterator

from pymongo.errors import PyMongoError
from redis.exceptions import RedisError


logger = logging.getLogger(__name__)


class AppError(Exception):

    status_code = 500
    code = "unexpected"

    def __init__(self, message: str = "Something went wrong") -> None:
        super().__init__(message)
        self.message = message


class NotAuthenticatedError(AppError):

    status_code = 401
    code = "not_authenticated"

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


class RemoteOperationFailed(AppError):

    status_code = 502
    code = "remote_operation_failed"


class NotFoundError(AppError):

    status_code = 404
    code = "not_found"

    def __init__(self, message: str = "Not found") -> None:
        super().__init__(message)


class UnauthorizedError(AppError):
    """The resource exists but belongs to somebody else."""

    status_code = 403
    code = "unauthorized"

    def __init__(self, message: str = "Not allowed") -> None:
        super().__init__(message)


@contextmanager
def remote_operation(action: str) -> Iterator[None]:
    """Translate driver errors raised inside the block into RemoteOperationFailed."""
    try:
        yield
    except (PyMongoError, RedisError) as exc:
        logger.error("Remote operation failed: %s", action, exc_info=True)
        raise RemoteOperationFailed(f"Failed to {action}") from exc
