"""Transport - UDP request/response session with chronyd."""

from .session import Session

__all__ = ['Session']
