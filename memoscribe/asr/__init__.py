"""
Transcription orchestration for memoscribe.

Design intent:
- Choose backends from configuration and handle primary/fallback.
- Provide default speech segmentation and transcript aggregation.
- Keep backend-specific complexity out of API handlers.
"""
