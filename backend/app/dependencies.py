"""FastAPI dependency injection functions.

Authentication and tenant resolution live outside this service; callers
pass the organization explicitly in the ``X-Organization-Id`` header.
"""

from fastapi import Header, HTTPException, status

from services.container import Services, get_services


def get_app_services() -> Services:
    """Engine, scheduler and repositories bound to the application database.

    Tests override this dependency with services on their own database.
    """
    return get_services()


async def get_organization_id(
    x_organization_id: str = Header(default="", alias="X-Organization-Id"),
) -> str:
    """
    Organization the request acts for.

    Raises:
        HTTPException: If the header is missing
    """
    organization_id = x_organization_id.strip()
    if not organization_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Organization-Id header is required",
        )
    return organization_id
