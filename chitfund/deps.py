# chitfund/deps.py
from typing import Any, Dict

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from chitfund import crud, models
from chitfund.db import get_db
from chitfund.errors import Forbidden, Unauthorized
from chitfund.security import decode_access_token
from chitfund.services.merchant_billing import refresh_subscription_status

# tokens come from the auth service; this URL only feeds the OpenAPI docs
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


# ======================================================
# TOKEN CLAIMS
# ======================================================
def get_token_claims(token: str = Depends(oauth2_scheme)) -> Dict[str, Any]:
    return decode_access_token(token)


# ======================================================
# AUTHENTICATED SUBSCRIBER
# ======================================================
def get_current_user(
    claims: Dict[str, Any] = Depends(get_token_claims),
    db: Session = Depends(get_db),
) -> models.User:
    if claims.get("role") != "user":
        raise Forbidden("User access only")

    user = crud.get_user(db, int(claims["uid"]))
    if user is None:
        raise Unauthorized("User not found")
    if not user.is_active:
        raise Forbidden("User account is inactive")
    return user


# ======================================================
# AUTHENTICATED MERCHANT
# ======================================================
def get_current_merchant(
    claims: Dict[str, Any] = Depends(get_token_claims),
    db: Session = Depends(get_db),
) -> models.Merchant:
    """
    Merchant behind the token, with expiry and any due plan switch applied
    before the handler sees it.
    """
    if claims.get("role") != "merchant":
        raise Forbidden("Merchant access only")

    merchant = crud.get_merchant(db, int(claims["uid"]))
    if merchant is None:
        raise Unauthorized("Merchant not found")
    if not merchant.is_active:
        raise Forbidden("Merchant account is inactive")

    refresh_subscription_status(db, merchant)
    return merchant


__all__ = ["get_db", "get_token_claims", "get_current_user", "get_current_merchant", "oauth2_scheme"]
