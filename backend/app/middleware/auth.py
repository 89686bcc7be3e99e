from __future__ import annotations

from fastapi import HTTPException, Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..auth.cognito import CognitoAuthError, verify_bearer_token
from ..observability.logging import get_logger
from ..problem_details import problem_response

log = get_logger("auth_middleware")


def is_public_path(path: str) -> bool:
    # Only the health endpoint is reachable without a bearer token.
    return path == "/"


def _bearer_token(request: Request) -> str:
    auth = request.headers.get("authorization")
    if not auth:
        raise HTTPException(status_code=401, detail="Missing bearer token")

    parts = str(auth).split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=401, detail="Malformed authorization header")
    return parts[1].strip()


async def require_auth(request: Request):
    path = request.url.path

    # Preflight is answered by CORSMiddleware.
    if request.method.upper() == "OPTIONS":
        return

    if not path.startswith("/api/") or is_public_path(path):
        return

    token = _bearer_token(request)
    try:
        user = verify_bearer_token(token)
    except CognitoAuthError as e:
        raise HTTPException(status_code=int(e.status_code), detail=str(e)) from e

    request.state.user = user


class AuthMiddleware(BaseHTTPMiddleware):
    """
    Verifies the Cognito bearer token for every /api/* request.

    Added before CORSMiddleware so auth failures still carry CORS headers.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            await require_auth(request)
        except HTTPException as exc:
            status_code = int(exc.status_code or 500)
            if status_code >= 500:
                log.error("auth_middleware_error", status_code=status_code, path=request.url.path)
            else:
                log.info("auth_middleware_denied", status_code=status_code, path=request.url.path)
            return problem_response(
                request=request,
                status_code=status_code,
                detail=str(exc.detail) if isinstance(exc.detail, str) else None,
            )
        return await call_next(request)
