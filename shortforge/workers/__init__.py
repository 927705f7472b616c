"""Worker processes for the production pipeline.

The pool claims pending tasks from the registry and runs each one through
the orchestrator, at most WORKER_CONCURRENCY at a time.
"""
