"""Browser drivers for listing sources."""

from .stealth import StealthPageDriver

__all__ = ['StealthPageDriver']
