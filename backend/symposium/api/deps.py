from fastapi import Depends, HTTPException, status

from ..core.security import Principal, decode_token, oauth2_scheme


def get_current_principal(token: str = Depends(oauth2_scheme)) -> Principal:
    principal = decode_token(token)

    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return principal


def require_admin(
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    if not principal.is_admin:
        raise HTTPException(
            status_code=403, detail="The user doesn't have enough privileges"
        )
    return principal
