"""
File Ingestion Processors

Shared processing utilities for file ingestion:
- stability.py - Debounce raw events until size and mtime settle
- readiness.py - Bounded retry until a file can be opened
- router.py - Regex rule based copy routing
- baseline.py - Baseline record creation, matching and renaming
- retention.py - Periodic removal of expired baseline records
"""
