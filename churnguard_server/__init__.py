"""ChurnGuard server package.

Exports for testing and module access.
"""

from churnguard_server import lib, models

__all__ = ['lib', 'models']
