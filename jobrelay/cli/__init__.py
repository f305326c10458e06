"""Job Relay operator CLI"""

from jobrelay import __version__

__all__ = ["__version__"]
