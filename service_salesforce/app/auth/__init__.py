"""
OAuth2 token handling for the Salesforce service.
"""

from .token_manager import Credential, TokenManager

__all__ = [
    "Credential",
    "TokenManager",
]
