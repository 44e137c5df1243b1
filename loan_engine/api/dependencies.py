"""
Engine dependency for API routes
"""

from typing import Optional

from ..engine import LoanEngine


_engine: Optional[LoanEngine] = None


def get_engine() -> LoanEngine:
    """Process-wide engine, built from configuration on first use"""
    global _engine
    if _engine is None:
        _engine = LoanEngine()
    return _engine


def set_engine(engine: Optional[LoanEngine]) -> None:
    """Replace the process-wide engine (None resets it)"""
    global _engine
    _engine = engine
