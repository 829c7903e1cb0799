# chitfund/security.py
import logging
from typing import Optional, Dict, Any

from cryptography.fernet import Fernet
from jose import jwt, JWTError

from chitfund import config
from chitfund.errors import Unauthorized

log = logging.getLogger("chitfund.security")


# --------------------------------------------------
# TOKEN HELPERS
# --------------------------------------------------
def decode_access_token(token: str) -> Dict[str, Any]:
    """
    Decode a bearer token issued by the auth service.
    Expected claims: uid (account id), role ("user" | "merchant"), sub (email).
    """
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except JWTError:
        raise Unauthorized("Invalid or expired token")

    if not payload.get("uid"):
        raise Unauthorized("Invalid token payload")
    payload.setdefault("role", "user")
    return payload


# --------------------------------------------------
# SECRETS AT REST (merchant gateway keys)
# --------------------------------------------------
def get_fernet() -> Fernet:
    """
    Fernet instance built from FERNET_KEY (URL-safe base64, 32 bytes).
    Raises ValueError when the key is missing.
    """
    key = config.FERNET_KEY
    if not key:
        log.critical("FERNET_KEY is not configured. Encryption/decryption will fail.")
        raise ValueError("FERNET_KEY not configured")
    if isinstance(key, str):
        key = key.encode("utf-8")
    return Fernet(key)


def encrypt_secret(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return get_fernet().encrypt(value.encode("utf-8")).decode("utf-8")


def decrypt_secret(encrypted: Optional[str]) -> Optional[str]:
    """
    Raises cryptography.fernet.InvalidToken on corrupt data or a wrong key.
    Callers decide how to recover.
    """
    if encrypted is None:
        return None
    return get_fernet().decrypt(encrypted.encode("utf-8")).decode("utf-8")
