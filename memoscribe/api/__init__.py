"""
API boundary for memoscribe.

Design intent:
- Expose thin, typed endpoints over the transcription pipeline.
- Keep request validation explicit and failure modes predictable.
"""
