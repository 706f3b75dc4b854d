"""FocusLock HTTP surface (FastAPI)."""
