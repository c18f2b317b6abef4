"""
Shared FastAPI dependencies.
"""

from fastapi import HTTPException, Request

from cabinet_portal.models import IntegrationType
from cabinet_portal.services.registry import ServiceRegistry


def get_services(request: Request) -> ServiceRegistry:
    """Services built once in the application lifespan."""
    return request.app.state.services


def parse_service(service: str) -> IntegrationType:
    """Map a path segment to an integration, 400 when unknown."""
    try:
        return IntegrationType(service.replace("-", "_"))
    except ValueError:
        valid = ", ".join(t.value for t in IntegrationType)
        raise HTTPException(
            status_code=400,
            detail=f"Unknown service: {service}. Valid: {valid}",
        )
