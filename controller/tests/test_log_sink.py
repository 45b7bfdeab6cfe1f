"""Tests for the build log sink."""

import pytest

from controller.src.errors import LogChunkConflict, LogChunkGap
from controller.src.models.status import BuildTrigger
from controller.src.models.step import SourceRef

@pytest.fixture
def build(store, app_id):
    return store.create_build(
        app_id=app_id,
        source=SourceRef(),
        trigger=BuildTrigger.API,
        step_names=["fetch", "build"],
    )

def test_read_range_is_half_open(log_sink, build):
    step = build.steps[0]
    for i, line in enumerate(["a\n", "b\n", "c\n", "d\n"]):
        log_sink.append_chunk(build.id, step.id, i, line)

    chunks = log_sink.read_range(build.id, step.id, start=1, end=3)
    assert [(c.chunk_index, c.content) for c in chunks] == [(1, "b\n"), (2, "c\n")]
    assert [c.chunk_index for c in log_sink.read_range(build.id, step.id)] == [0, 1, 2, 3]

def test_same_chunk_twice_is_idempotent(log_sink, build):
    step = build.steps[0]
    log_sink.append_chunk(build.id, step.id, 0, "hello\n")
    log_sink.append_chunk(build.id, step.id, 0, "hello\n")

    assert len(log_sink.read_range(build.id, step.id)) == 1

def test_different_content_at_same_index_rejected(log_sink, build):
    step = build.steps[0]
    log_sink.append_chunk(build.id, step.id, 0, "hello\n")

    with pytest.raises(LogChunkConflict):
        log_sink.append_chunk(build.id, step.id, 0, "goodbye\n")
    assert log_sink.read_range(build.id, step.id)[0].content == "hello\n"

def test_gap_rejected(log_sink, build):
    step = build.steps[0]
    log_sink.append_chunk(build.id, step.id, 0, "a\n")

    with pytest.raises(LogChunkGap) as exc_info:
        log_sink.append_chunk(build.id, step.id, 2, "c\n")
    assert exc_info.value.expected_index == 1

def test_indexes_are_per_step(log_sink, build):
    fetch, compile_ = build.steps
    log_sink.append_chunk(build.id, fetch.id, 0, "fetching\n")
    log_sink.append_chunk(build.id, compile_.id, 0, "compiling\n")
    log_sink.append_chunk(build.id, None, 0, "build level\n")

    assert log_sink.next_index(build.id, fetch.id) == 1
    assert log_sink.next_index(build.id, compile_.id) == 1
    assert [c.content for c in log_sink.read_range(build.id)] == ["build level\n"]

def test_writer_resumes_after_existing_chunks(log_sink, build):
    step = build.steps[0]
    log_sink.append_chunk(build.id, step.id, 0, "first\n")

    writer = log_sink.writer(build.id, step.id)
    writer.write("second\n")
    writer.write("")
    writer.write("third\n")

    chunks = log_sink.read_range(build.id, step.id)
    assert [(c.chunk_index, c.content) for c in chunks] == [
        (0, "first\n"),
        (1, "second\n"),
        (2, "third\n"),
    ]
