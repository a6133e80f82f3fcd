"""
queuectl

A persistent background job queue: shell commands are claimed atomically by
a pool of worker processes and retried with exponential backoff until they
complete or land in the dead letter queue.
"""

__version__ = "1.2.0"
