"""
API module.
Contains the read-only FastAPI dashboard.
"""

from queuectl.api.main import create_app, run

__all__ = ["create_app", "run"]
