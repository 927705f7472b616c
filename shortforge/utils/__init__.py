"""Cross-cutting utilities for the production pipeline.

Modules:
    logging: structlog configuration and logger factory.
    cli_wrapper: Non-blocking ffmpeg/ffprobe execution.
    filesystem: Per-task media workspace paths.
"""
