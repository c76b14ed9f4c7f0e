"""
Configuration package.
"""

from crm.config.settings import settings, Settings

__all__ = ['settings', 'Settings']
