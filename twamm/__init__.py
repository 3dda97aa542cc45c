"""
TWAMM Engine Package

Core imports are lazily loaded so that importing the package does not pull
in the logging or configuration stack.  For direct module access, import
from submodules:

    from twamm.engine import Vault, TwammPool, PoolOperation
    from twamm.exceptions import CallerError, ErrorCode
"""

__version__ = "1.0.0"


# Lazy imports to avoid loading everything at package import
def __getattr__(name):
    """Lazy module loading."""
    if name == 'Vault':
        from .engine import Vault
        return Vault
    elif name == 'TwammPool':
        from .engine import TwammPool
        return TwammPool
    elif name == 'TwammError':
        from .exceptions import TwammError
        return TwammError
    raise AttributeError(f"module 'twamm' has no attribute {name!r}")

__all__ = ['Vault', 'TwammPool', 'TwammError']
