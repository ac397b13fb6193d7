import secrets
from functools import wraps

from fastapi import Request, status

from src.api.core.constants import ADMIN_TOKEN_HEADER
from src.api.core.exceptions.base import WedAIException
from src.api.core.messages import MessageCode
from src.utils.logger import get_logger
from src.utils.settings.app import AppSettings

logger = get_logger(__name__)


def admin():
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            # Find request in args/kwargs
            request = None

            for arg in args:
                if isinstance(arg, Request):
                    request = arg
                    break

            for key, value in kwargs.items():
                if isinstance(value, Request):
                    request = value
                    break

            # Validate request exists
            if not request:
                raise WedAIException(
                    MessageCode.AUTH_REQUIRED,
                    status.HTTP_401_UNAUTHORIZED,
                    {"description": "Request object not found"},
                )

            presented = request.headers.get(ADMIN_TOKEN_HEADER)
            if not presented:
                raise WedAIException(
                    MessageCode.AUTH_REQUIRED,
                    status.HTTP_401_UNAUTHORIZED,
                    {"description": f"Missing '{ADMIN_TOKEN_HEADER}' header"},
                )

            expected = AppSettings().ADMIN_API_TOKEN.get_secret_value()
            # An unset token disables the admin surface entirely
            if not expected or not secrets.compare_digest(presented, expected):
                logger.warning(
                    "Unauthorized admin access attempt",
                    endpoint=request.url.path,
                )
                raise WedAIException(
                    MessageCode.FORBIDDEN,
                    status.HTTP_403_FORBIDDEN,
                    {"description": "Admin access required"},
                )

            logger.info("Admin access granted", endpoint=request.url.path)

            return await func(*args, **kwargs)

        return wrapper

    return decorator
