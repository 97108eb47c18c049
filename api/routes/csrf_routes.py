"""CSRF token bootstrap endpoint."""

from fastapi import APIRouter, Request

from core.dependencies import CsrfGuardDep
from schemas import CsrfTokenResponse

router = APIRouter(prefix="/api", tags=["security"])


@router.get(
    "/csrf-token",
    response_model=CsrfTokenResponse,
    summary="Get the CSRF token for this session",
    description=(
        "Returns the session's CSRF token, issuing one if the session has "
        "none yet. Repeated calls in the same session return the same token "
        "until login rotates it."
    ),
)
async def get_csrf_token(request: Request, guard: CsrfGuardDep) -> CsrfTokenResponse:
    token = guard.get_or_create_token(request.session)
    return CsrfTokenResponse(csrf_token=token, header_name=guard.header_name)
