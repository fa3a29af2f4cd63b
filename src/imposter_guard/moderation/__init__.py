"""Impersonation detection pipeline.

Self-contained modules:
- decoder (untrusted frame -> typed event or failure)
- normalizer (display name -> canonical key)
- registry + matcher (fixed watched-identity table with exceptions)
- dispatcher (one list-item write per positive verdict)
- pipeline (wires the above together for the stream loop)
"""
