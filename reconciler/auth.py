from fastapi import Header, HTTPException, Request
from jose import JWTError, jwt


def current_business_id(request: Request, authorization: str = Header(...)) -> str:
    settings = request.app.state.settings
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer" or not settings.jwt_secret:
            raise ValueError("unsupported authorization")
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        business_id = claims.get("business_id") or claims["sub"]
    except (ValueError, KeyError, JWTError):
        raise HTTPException(status_code=401, detail="Invalid or missing token")
    return business_id
