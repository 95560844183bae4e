"""
memoscribe: voice memo transcription pipeline.

Design intent:
- Turn a recording, whole or as speech segments, into ordered text.
- Keep cloud and on-device backends interchangeable behind one interface.
"""
