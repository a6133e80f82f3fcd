"""
Reaper module.
Contains the stale lock reaper for recovering jobs from crashed workers.
"""

from queuectl.reaper.main import Reaper

__all__ = ["Reaper"]
