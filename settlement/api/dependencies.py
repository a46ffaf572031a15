"""FastAPI dependencies for DI.

Endpoints receive the process-wide container through ``Depends`` so tests can
swap it for one built around fakes via ``app.dependency_overrides``.
"""

from settlement.services.container import Services, get_services


def get_services_dep() -> Services:
    """Provide the services container for dependency injection."""
    return get_services()
