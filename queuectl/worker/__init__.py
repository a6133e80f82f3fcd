"""
Worker module.
Contains the execution supervisor, the command executor, the retry policy
and the worker pool. Workers run as ``python -m queuectl.worker.main``.
"""
