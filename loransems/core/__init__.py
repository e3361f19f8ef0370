"""
Core module - Contains configuration, logging, and authentication.
"""

from loransems.core.config import EMSConfig
from loransems.core.logging import RedactingFilter, configure_logging

__all__ = ["EMSConfig", "RedactingFilter", "configure_logging"]
