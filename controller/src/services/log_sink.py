"""
Build log sink - append-only chunked logs in the build_logs table.
"""

import logging
from functools import lru_cache
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from controller.src.db.database import get_engine, make_session_factory
from controller.src.errors import InvalidInput, LogChunkConflict, LogChunkGap
from controller.src.models.db import BuildLog

logger = logging.getLogger(__name__)

class LogSink:
    """
    Chunks are keyed by (build, step, chunk_index) and never rewritten.

    Appending the same content at an existing index is a no-op, so writers
    can retry blindly. Different content at an existing index is rejected,
    and so is an index past the next free one.
    """

    def __init__(self, session_factory: sessionmaker):
        self._sessions = session_factory

    @staticmethod
    def _scope(query, build_id: int, step_id: Optional[int]):
        query = query.where(BuildLog.build_id == build_id)
        if step_id is None:
            return query.where(BuildLog.step_id.is_(None))
        return query.where(BuildLog.step_id == step_id)

    def next_index(self, build_id: int, step_id: Optional[int] = None) -> int:
        with self._sessions.begin() as session:
            last = session.execute(
                self._scope(select(func.max(BuildLog.chunk_index)), build_id, step_id)
            ).scalar_one_or_none()
        return 0 if last is None else last + 1

    def append_chunk(self, build_id: int, step_id: Optional[int], chunk_index: int, content: str):
        if chunk_index < 0:
            raise InvalidInput("chunk_index must not be negative")

        try:
            with self._sessions.begin() as session:
                existing = session.execute(
                    self._scope(select(BuildLog.content), build_id, step_id)
                    .where(BuildLog.chunk_index == chunk_index)
                ).scalar_one_or_none()
                if existing is not None:
                    if existing == content:
                        return
                    raise LogChunkConflict(
                        f"Chunk {chunk_index} of build {build_id} step {step_id} already written"
                    )

                last = session.execute(
                    self._scope(select(func.max(BuildLog.chunk_index)), build_id, step_id)
                ).scalar_one_or_none()
                expected = 0 if last is None else last + 1
                if chunk_index != expected:
                    raise LogChunkGap(build_id, step_id, chunk_index, expected)

                session.add(
                    BuildLog(
                        build_id=build_id,
                        step_id=step_id,
                        chunk_index=chunk_index,
                        content=content,
                    )
                )
        except IntegrityError:
            # Same index raced in from another writer; compare with what won
            with self._sessions.begin() as session:
                existing = session.execute(
                    self._scope(select(BuildLog.content), build_id, step_id)
                    .where(BuildLog.chunk_index == chunk_index)
                ).scalar_one_or_none()
            if existing != content:
                raise LogChunkConflict(
                    f"Chunk {chunk_index} of build {build_id} step {step_id} already written"
                )

    def read_range(
        self,
        build_id: int,
        step_id: Optional[int] = None,
        start: int = 0,
        end: Optional[int] = None,
    ) -> List[BuildLog]:
        """Chunks with start <= chunk_index < end, in index order."""
        with self._sessions.begin() as session:
            query = self._scope(select(BuildLog), build_id, step_id).where(
                BuildLog.chunk_index >= start
            )
            if end is not None:
                query = query.where(BuildLog.chunk_index < end)
            return list(session.execute(query.order_by(BuildLog.chunk_index)).scalars())

    def writer(self, build_id: int, step_id: Optional[int] = None) -> "ChunkWriter":
        return ChunkWriter(self, build_id, step_id)

class ChunkWriter:
    """Appends chunks for one (build, step) in order, resuming after existing ones."""

    def __init__(self, sink: LogSink, build_id: int, step_id: Optional[int]):
        self.sink = sink
        self.build_id = build_id
        self.step_id = step_id
        self.next_index = sink.next_index(build_id, step_id)

    def write(self, content: str):
        if not content:
            return
        try:
            self.sink.append_chunk(self.build_id, self.step_id, self.next_index, content)
        except LogChunkGap as e:
            logger.warning(f"Log chunk gap for build {self.build_id}, resyncing at {e.expected_index}")
            self.next_index = e.expected_index
            self.sink.append_chunk(self.build_id, self.step_id, self.next_index, content)
        self.next_index += 1

@lru_cache()
def get_log_sink() -> LogSink:
    return LogSink(make_session_factory(get_engine()))
