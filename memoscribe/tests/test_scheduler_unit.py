import asyncio
import random

from memoscribe.internal_core.asr.base import ExportFailure, ServerError
from memoscribe.internal_core.asr.controller import placeholder_response, transcribe_in_batches
from memoscribe.internal_core.contracts import Segment, TranscriptionResponse


def _segments(count: int) -> list[Segment]:
    return [Segment(start_time=float(i), end_time=float(i) + 0.9) for i in range(count)]


def test_transcribe_in_batches_preserves_order_under_jitter() -> None:
    rng = random.Random(7)
    delays = [rng.uniform(0.0, 0.02) for _ in range(10)]

    async def op(index: int, segment: Segment) -> TranscriptionResponse:
        await asyncio.sleep(delays[index])
        return TranscriptionResponse(text=f"chunk-{index}")

    results = asyncio.run(transcribe_in_batches(_segments(10), op, concurrency=3))

    assert [item.text for item in results] == [f"chunk-{i}" for i in range(10)]
    assert [item.segment.start_time for item in results] == [float(i) for i in range(10)]


def test_transcribe_in_batches_failed_chunk_becomes_placeholder() -> None:
    texts = ["A", None, "C"]

    async def op(index: int, segment: Segment) -> TranscriptionResponse:
        if texts[index] is None:
            raise ServerError(500, "boom", "test")
        return TranscriptionResponse(text=texts[index])

    results = asyncio.run(transcribe_in_batches(_segments(3), op, concurrency=3))

    assert len(results) == 3
    assert results[0].text == "A"
    assert results[1].text == ""
    assert results[1].response.duration == results[1].segment.duration
    assert results[2].text == "C"


def test_transcribe_in_batches_unexpected_error_and_export_failure_are_isolated() -> None:
    async def op(index: int, segment: Segment) -> TranscriptionResponse:
        if index == 0:
            raise ExportFailure("cannot cut")
        if index == 1:
            raise RuntimeError("unexpected")
        return TranscriptionResponse(text="ok")

    results = asyncio.run(transcribe_in_batches(_segments(3), op, concurrency=2))

    assert [item.text for item in results] == ["", "", "ok"]


def test_transcribe_in_batches_never_exceeds_concurrency() -> None:
    state = {"active": 0, "peak": 0}

    async def op(index: int, segment: Segment) -> TranscriptionResponse:
        state["active"] += 1
        state["peak"] = max(state["peak"], state["active"])
        await asyncio.sleep(0.005 * (index % 3 + 1))
        state["active"] -= 1
        return TranscriptionResponse(text=str(index))

    asyncio.run(transcribe_in_batches(_segments(8), op, concurrency=3))

    assert state["peak"] == 3


def test_transcribe_in_batches_waits_for_whole_batch_before_next() -> None:
    events: list[tuple[str, int]] = []

    async def op(index: int, segment: Segment) -> TranscriptionResponse:
        events.append(("start", index))
        # The first chunk of each batch is the slowest.
        await asyncio.sleep(0.02 if index % 2 == 0 else 0.0)
        events.append(("end", index))
        return TranscriptionResponse(text=str(index))

    asyncio.run(transcribe_in_batches(_segments(4), op, concurrency=2))

    assert events.index(("start", 2)) > events.index(("end", 0))
    assert events.index(("start", 2)) > events.index(("end", 1))


def test_transcribe_in_batches_reports_progress_and_handles_empty_input() -> None:
    seen: list[tuple[int, int, str]] = []

    async def op(index: int, segment: Segment) -> TranscriptionResponse:
        return TranscriptionResponse(text=f"t{index}")

    results = asyncio.run(
        transcribe_in_batches(
            _segments(2),
            op,
            on_chunk=lambda index, total, result: seen.append((index, total, result.text)),
        )
    )

    assert len(results) == 2
    assert sorted(seen) == [(0, 2, "t0"), (1, 2, "t1")]
    assert asyncio.run(transcribe_in_batches([], op)) == []


def test_placeholder_response_keeps_segment_length() -> None:
    segment = Segment(start_time=2.0, end_time=3.5)

    placeholder = placeholder_response(segment)

    assert placeholder.text == ""
    assert placeholder.duration == 1.5
    assert placeholder.confidence is None


def test_transcribe_in_batches_survives_failing_progress_callback() -> None:
    seen: list[int] = []

    async def op(index: int, segment: Segment) -> TranscriptionResponse:
        return TranscriptionResponse(text=f"chunk-{index}")

    def on_chunk(index: int, total: int, result) -> None:
        seen.append(index)
        if index == 1:
            raise RuntimeError("progress sink closed")

    results = asyncio.run(transcribe_in_batches(_segments(3), op, concurrency=3, on_chunk=on_chunk))

    assert [item.text for item in results] == ["chunk-0", "chunk-1", "chunk-2"]
    assert sorted(seen) == [0, 1, 2]
