"""
Integration hub: connected third-party accounts and the agent tools they expose.

Credential instances are stored encrypted, kept fresh by the token lifecycle
manager, disconnected when a provider reports dead credentials, and composed
into a per-request tool catalog.
"""

__version__ = "0.1.0"
