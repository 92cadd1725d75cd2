from typing import AsyncGenerator
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


async def get_session(request: Request) -> AsyncGenerator[AsyncSession,None]:
    # the factory is built once in the app lifespan; the session is closed when the request ends
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


async def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.session_factory
