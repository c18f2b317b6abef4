"""
Integration-level errors, distinct from provider HTTP errors.
"""

from typing import Optional

from cabinet_portal.models.enums import IntegrationType


class IntegrationError(Exception):
    """Base exception for integration failures."""

    def __init__(self, message: str, service: Optional[IntegrationType] = None):
        super().__init__(message)
        self.service = service


class IntegrationNotConfiguredError(IntegrationError):
    """No OAuth client credentials in the settings."""


class IntegrationNotConnectedError(IntegrationError):
    """No token has ever been saved for the service."""


class TokenRefreshError(IntegrationError):
    """A token exists but the provider refused to refresh it."""
