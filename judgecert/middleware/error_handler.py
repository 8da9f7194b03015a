"""
Error Handler Middleware

Maps the certification error taxonomy onto the HTTP contract for whatever
transport layer mounts these services. APIError subclasses keep their own
status and body; store failures and anything unexpected become a generic 500
carrying a short log_id for support.
"""
import logging
import traceback
import uuid
from typing import Callable, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.base import BaseHTTPMiddleware

from judgecert.errors import APIError, InternalError

logger = logging.getLogger(__name__)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Global error handling middleware.

    Catches all uncaught exceptions and returns structured error responses.
    """

    def __init__(self, app, debug: bool = False):
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)

        except APIError as e:
            self._log_error(request, e)
            return e.to_response()

        except SQLAlchemyError as e:
            log_id = str(uuid.uuid4())[:8]
            self._log_error(request, e, log_id, is_unexpected=True)
            return self._internal_response(e, log_id, "A storage error occurred. Please try again.")

        except Exception as e:
            log_id = str(uuid.uuid4())[:8]
            self._log_error(request, e, log_id, is_unexpected=True)
            return self._internal_response(e, log_id)

    def _internal_response(
        self,
        error: Exception,
        log_id: str,
        message: str = "An internal error occurred. Please try again or contact support."
    ) -> JSONResponse:
        body = InternalError(message, log_id=log_id).to_dict()
        if self.debug:
            body["details"].update({
                "type": type(error).__name__,
                "traceback": traceback.format_exc(),
            })
        return JSONResponse(status_code=500, content=body)

    def _log_error(
        self,
        request: Request,
        error: Exception,
        log_id: Optional[str] = None,
        is_unexpected: bool = False
    ):
        """Log error with request context."""
        context = {
            "log_id": log_id,
            "method": request.method,
            "path": request.url.path,
            "client": request.client.host if request.client else None,
        }

        if is_unexpected:
            logger.error(
                f"Unexpected error [{log_id}]: {str(error)}\n"
                f"Context: {context}\n"
                f"Traceback:\n{traceback.format_exc()}"
            )
        else:
            logger.warning(f"Handled error: {str(error)} | Context: {context}")
