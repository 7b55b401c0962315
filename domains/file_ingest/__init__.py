"""
File Ingestion Domain

Monitors equipment drop folders and moves each file through:
- Stability tracking → wait until the writer has finished
- Readiness gate → wait until the file can be opened
- Rule routing → copy to the first matching destination
- Baseline correlation → record timestamps and rename late-arriving files
- Dispatch → hand files to runtime-loaded processing modules
"""

__all__ = ["watchers", "processors", "dispatch", "orchestrator"]
