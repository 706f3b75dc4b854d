"""
FocusLock enforcement lifecycle engine.

Scheduler, session state machine, proof scoring and notification fan-out
over a SQLite store. The HTTP surface lives in focuslock_api.
"""

__version__ = "1.0.0"
