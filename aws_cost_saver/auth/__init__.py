"""AWS session and client construction."""

from .session import ClientFactory, create_session

__all__ = ['ClientFactory', 'create_session']
