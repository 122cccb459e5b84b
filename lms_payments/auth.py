from fastapi import Depends, Header, HTTPException
from jose import JWTError, jwt

from lms_payments.config import Settings, get_settings


def get_current_user_id(
    authorization: str = Header(None),
    settings: Settings = Depends(get_settings),
) -> str:
    if not settings.jwt_secret:
        raise HTTPException(status_code=500, detail="JWT_SECRET is not configured")

    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer":
            raise ValueError("unsupported scheme")
        claims = jwt.decode(token, settings.jwt_secret, algorithms=["HS256"])
    except (AttributeError, ValueError, JWTError):
        raise HTTPException(status_code=401, detail="Invalid or missing token")

    user_id = claims.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid or missing token")
    return str(user_id)
