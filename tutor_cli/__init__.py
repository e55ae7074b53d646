"""
tutor_cli - Terminal front end for structured tutoring conversations.
"""
from .constants import APP_NAME, APP_VERSION, APP_DESCRIPTION

__version__ = APP_VERSION
__all__ = ['APP_NAME', 'APP_VERSION', 'APP_DESCRIPTION']
