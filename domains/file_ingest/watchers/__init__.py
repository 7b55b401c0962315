"""
File Ingestion Watchers

- directory.py - watchdog-backed directory change notifications per watch target
"""
