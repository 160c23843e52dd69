from typing import Optional

from fastapi import FastAPI, Header
from fastapi.responses import JSONResponse

from ..common.errors import ExchangeError, UnauthorizedError
from ..common.trace import new_id
from .guard import AuthGuard, Identity


class BearerAuth:
    """HTTP Bearer 鉴权依赖：`Depends(BearerAuth(guard))` 返回调用方身份。"""

    def __init__(self, guard: AuthGuard) -> None:
        self.guard = guard

    def __call__(self, authorization: Optional[str] = Header(default=None)) -> Identity:
        if not authorization or not authorization.lower().startswith("bearer "):
            raise UnauthorizedError(message="Missing Bearer token")
        token = authorization.split(" ", 1)[1].strip()
        identity = self.guard.authenticate(token)
        if identity is None:
            raise UnauthorizedError(message="Invalid token")
        return identity


def install_error_handler(app: FastAPI) -> None:
    """Render ExchangeError as `{status, code, message, trace_id, data}` with its HTTP status."""

    @app.exception_handler(ExchangeError)
    async def exchange_error_handler(_, exc: ExchangeError):
        return JSONResponse(
            status_code=exc.http_status,
            content={
                "status": "error",
                "code": exc.code,
                "message": exc.message,
                "trace_id": new_id(),
                "data": exc.data or {},
            },
        )
