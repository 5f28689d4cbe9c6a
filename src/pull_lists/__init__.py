"""Core package for the DealMachine pull-lists runner.

This package houses the upstream client, the polling and paging
services, the homeowner parser and CSV export, and the streaming
HTTP endpoint that drives a multi-ZIP pull.
"""

__all__ = [
    "__version__",
]

__version__ = "0.1.0"
