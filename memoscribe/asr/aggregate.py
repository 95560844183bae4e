from __future__ import annotations

"""
Join ordered chunk results into one readable transcript.

Design intent:
- Keep the joined text deterministic for the same chunk list.
- Mark long pauses as sentence breaks without inventing words.
"""

from typing import Sequence

from memoscribe.internal_core.contracts import AggregatedTranscript, ChunkResult

PAUSE_BREAK_SEC = 1.2


def _ends_with_sentence_punctuation(text: str) -> bool:
    trimmed = text.rstrip()
    return bool(trimmed) and trimmed[-1] in ".!?"


def _starts_with_punctuation(text: str) -> bool:
    trimmed = text.lstrip()
    return bool(trimmed) and trimmed[0] in ",;:.!?"


def _join_texts(results: Sequence[ChunkResult]) -> str:
    out = ""
    last_end = 0.0
    for item in results:
        text = item.text.strip()
        if not text:
            continue
        if out:
            gap = item.segment.start_time - last_end
            if gap >= PAUSE_BREAK_SEC and not _ends_with_sentence_punctuation(out):
                out += ". "
            elif not out.endswith(" ") and not _starts_with_punctuation(text):
                out += " "
            out += text
        else:
            out = text[:1].upper() + text[1:]
        last_end = item.segment.end_time
    return out


def aggregate_chunks(results: Sequence[ChunkResult]) -> AggregatedTranscript:
    """
    Confidence is the mean of the confidences reported by non-empty chunks; when no
    chunk reports one, it is the share of chunks that produced text.
    """

    indexed = sorted(enumerate(results), key=lambda pair: pair[1].segment.start_time)
    ordered = [item for _, item in indexed]
    failed = sorted(index for index, item in indexed if not item.text.strip())
    non_empty = [item for item in ordered if item.text.strip()]

    provided = [item.response.confidence for item in non_empty if item.response.confidence is not None]
    if provided:
        confidence = sum(provided) / len(provided)
    else:
        confidence = len(non_empty) / max(1, len(results))

    return AggregatedTranscript(
        text=_join_texts(ordered),
        confidence=min(1.0, max(0.0, confidence)),
        processed_chunks=len(non_empty),
        total_chunks=len(results),
        failed_indices=failed,
    )
