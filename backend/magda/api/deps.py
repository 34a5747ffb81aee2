from fastapi import Depends, HTTPException, Request, status

from magda.models.user import User
from magda.services.container import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_current_user(services: Services = Depends(get_services)) -> User:
    if not services.session.is_authenticated or services.session.user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return services.session.user


async def require_account(
    account_id: str,
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> str:
    """Allow the signed-in user's own account and its linked family accounts."""
    if not await services.repository.owns_account(current_user.id, account_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account does not belong to the current user",
        )
    return account_id


async def require_primary_account(
    account_id: str,
    current_user: User = Depends(get_current_user),
) -> str:
    if account_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the primary account can manage linked accounts",
        )
    return account_id
