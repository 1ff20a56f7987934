# FedGate - SAML Federated Authentication Test Backend
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Repository for the users table.

``UserRepository`` owns the session factory and hands out one
transaction (an ``AsyncSession``) per operation. Query methods take that
session explicitly so every statement of an operation runs in the same
transaction.

A transaction is committed iff its body succeeded. A rollback failure is
logged and never replaces the error that caused the rollback.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import select, update
from sqlalchemy.exc import MultipleResultsFound, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fedgate_core.exceptions import (
    DBBeginError,
    DBCommitError,
    DBRollbackError,
    QueryError,
    QueryResultError,
)

from .models import UserModel, _utcnow

logger = logging.getLogger(__name__)


class UserRepository:
    """Transactional lookup, creation and token bookkeeping for users."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # --------------------------------------------------------
    # TRANSACTIONS
    # --------------------------------------------------------

    async def begin(self) -> AsyncSession:
        session = self._session_factory()
        try:
            await session.begin()
        except SQLAlchemyError as e:
            await session.close()
            raise DBBeginError(f"Failed to begin transaction: {e}", cause=e) from e
        return session

    async def commit(self, session: AsyncSession) -> None:
        try:
            await session.commit()
        except SQLAlchemyError as e:
            raise DBCommitError(f"Failed to commit transaction: {e}", cause=e) from e
        finally:
            await session.close()

    async def rollback(self, session: AsyncSession) -> None:
        try:
            await session.rollback()
        except SQLAlchemyError as e:
            raise DBRollbackError(f"Failed to roll back transaction: {e}", cause=e) from e
        finally:
            await session.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """
        Run a block inside one transaction.

        Usage:
            async with repository.transaction() as tx:
                user = await repository.select_by_email(tx, email)
        """
        session = await self.begin()
        try:
            yield session
        except BaseException:
            try:
                await self.rollback(session)
            except DBRollbackError:
                logger.exception("Rollback failed")
            raise
        else:
            await self.commit(session)

    # --------------------------------------------------------
    # QUERIES
    # --------------------------------------------------------

    async def select_by_email(self, session: AsyncSession, email: str) -> UserModel | None:
        """Return the user with ``email``, or None when there is none."""
        try:
            result = await session.execute(select(UserModel).where(UserModel.email == email))
            return result.scalar_one_or_none()
        except MultipleResultsFound as e:
            raise QueryResultError(f"Multiple users share email {email}", cause=e) from e
        except SQLAlchemyError as e:
            raise QueryError(f"Failed to select user by email: {e}", cause=e) from e

    async def create_user(self, session: AsyncSession, email: str) -> UserModel:
        user = UserModel(email=email, access_token="", refresh_token="")
        session.add(user)
        try:
            await session.flush()
        except SQLAlchemyError as e:
            raise QueryError(f"Failed to create user: {e}", cause=e) from e
        if user.id is None:
            raise QueryResultError("Inserted user has no id")
        return user

    async def update_token(
        self,
        session: AsyncSession,
        user_id: int,
        access_token: str,
        refresh_token: str,
    ) -> None:
        """Store the user's current token pair. Empty strings clear it."""
        try:
            result = await session.execute(
                update(UserModel)
                .where(UserModel.id == user_id)
                .values(
                    access_token=access_token,
                    refresh_token=refresh_token,
                    updated_at=_utcnow(),
                )
            )
        except SQLAlchemyError as e:
            raise QueryError(f"Failed to update tokens: {e}", cause=e) from e
        if result.rowcount != 1:
            raise QueryResultError(
                f"Expected one user row for id {user_id}, updated {result.rowcount}"
            )


__all__ = ["UserRepository"]
