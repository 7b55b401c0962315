"""
File Ingestion Dispatch

- queue.py - Dispatch queue and its background consumer loop
- plugins.py - Plugin registry, loader and invoker
"""
