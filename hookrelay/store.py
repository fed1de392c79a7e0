"""Whole-document persistence for subscribers and delivery logs.

The state is read and written as one document. Mutations go through
``DocumentStore.mutate()`` which serializes read-modify-write cycles inside
the process so that concurrent requests cannot lose each other's updates.
"""

from __future__ import annotations

import asyncio
import copy
import functools
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from time import time
from typing import Any, AsyncIterator, Callable, TypeVar

import anyio
from pydantic import ValidationError
from sqlalchemy import JSON, Column, Integer
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Field, Session, SQLModel, create_engine

from .errors import StoreUnavailable
from .models import State

logger = logging.getLogger(__name__)

T = TypeVar("T")

STATE_KEY = "state"


class Document(SQLModel, table=True):
    key: str = Field(primary_key=True)
    data: dict[str, Any] = Field(sa_column=Column(JSON, nullable=False))
    updated_at: int = Field(sa_column=Column(Integer, nullable=False))


class DocumentStore:
    """Base store: subclasses implement the blocking ``_open/_read/_write``."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._opened = False

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await anyio.to_thread.run_sync(functools.partial(fn, *args))
        except StoreUnavailable:
            raise
        except (SQLAlchemyError, OSError, ValidationError) as exc:
            raise StoreUnavailable(f"store operation failed: {exc}") from exc

    async def open(self) -> None:
        await self._run(self._open)
        self._opened = True

    async def close(self) -> None:
        if self._opened:
            await self._run(self._close)
            self._opened = False

    async def read(self) -> State:
        if not self._opened:
            raise StoreUnavailable("store is not open")
        return await self._run(self._read)

    async def write(self, state: State) -> None:
        if not self._opened:
            raise StoreUnavailable("store is not open")
        await self._run(self._write, state)

    @asynccontextmanager
    async def mutate(self) -> AsyncIterator[State]:
        """Yield the current state and persist it when the block exits cleanly."""

        async with self._lock:
            state = await self.read()
            yield state
            await self.write(state)

    def _open(self) -> None:
        raise NotImplementedError

    def _close(self) -> None:
        pass

    def _read(self) -> State:
        raise NotImplementedError

    def _write(self, state: State) -> None:
        raise NotImplementedError


class SQLiteDocumentStore(DocumentStore):
    """Stores the whole state as a single JSON row in SQLite."""

    def __init__(self, path: str) -> None:
        super().__init__()
        self.path = Path(path)
        self.engine: Engine | None = None

    def _get_engine(self) -> Engine:
        if self.engine is None:
            raise StoreUnavailable("store is not open")
        return self.engine

    def _open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.engine = create_engine(
            f"sqlite:///{self.path}",
            echo=False,
            connect_args={"check_same_thread": False},
        )
        SQLModel.metadata.create_all(self.engine)
        with Session(self.engine) as session:
            if session.get(Document, STATE_KEY) is None:
                session.add(
                    Document(
                        key=STATE_KEY,
                        data=State().to_wire(),
                        updated_at=int(time()),
                    )
                )
                session.commit()
        logger.info("document store initialized at %s", self.path)

    def _close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None

    def _read(self) -> State:
        with Session(self._get_engine()) as session:
            row = session.get(Document, STATE_KEY)
            if row is None:
                return State()
            return State.model_validate(row.data)

    def _write(self, state: State) -> None:
        with Session(self._get_engine()) as session:
            session.merge(
                Document(key=STATE_KEY, data=state.to_wire(), updated_at=int(time()))
            )
            session.commit()


class MemoryDocumentStore(DocumentStore):
    """In-process store; every read and write copies the document."""

    def __init__(self, initial: State | None = None) -> None:
        super().__init__()
        self._doc: dict[str, Any] = (initial or State()).to_wire()

    def _open(self) -> None:
        pass

    def _read(self) -> State:
        return State.model_validate(copy.deepcopy(self._doc))

    def _write(self, state: State) -> None:
        self._doc = copy.deepcopy(state.to_wire())


def build_store(path: str) -> DocumentStore:
    if path == ":memory:":
        return MemoryDocumentStore()
    return SQLiteDocumentStore(path)
