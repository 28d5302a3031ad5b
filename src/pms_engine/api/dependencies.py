"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from decimal import Decimal
from typing import Annotated

from fastapi import Depends, Header, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from pms_engine.facade import OperationResult, PmsEngine

ERROR_STATUS = {
    "validation": status.HTTP_400_BAD_REQUEST,
    "forbidden": status.HTTP_403_FORBIDDEN,
    "not_found": status.HTTP_404_NOT_FOUND,
    "conflict": status.HTTP_409_CONFLICT,
    "internal": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_pms_engine(request: Request) -> PmsEngine:
    """PmsEngine facade bound to the application."""
    return request.app.state.pms_engine


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with request.app.state.session_factory() as session:
        yield session


async def get_actor_id(
    x_actor_id: Annotated[str | None, Header()] = None,
) -> str | None:
    """Acting user from the X-Actor-ID header; resolution happens in the facade."""
    return x_actor_id


def to_response(result: OperationResult, success_status: int = status.HTTP_200_OK) -> JSONResponse:
    """Render an OperationResult with the HTTP status for its error kind."""
    code = success_status if result.success else ERROR_STATUS[result.error_kind]
    return JSONResponse(
        status_code=code,
        content=jsonable_encoder(result.to_dict(), custom_encoder={Decimal: str}),
    )


# Type aliases for cleaner dependency injection
Engine = Annotated[PmsEngine, Depends(get_pms_engine)]
ActorId = Annotated[str | None, Depends(get_actor_id)]
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
