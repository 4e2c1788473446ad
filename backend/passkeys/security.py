import hashlib
import secrets
import time

import bcrypt
import jwt
from fido2.utils import websafe_decode, websafe_encode

ALGO = "HS256"

# No 0/O/1/I/l: codes are read off paper and typed back in.
RECOVERY_CODE_ALPHABET = "23456789ABCDEFGHJKLMNPQRSTUVWXYZ"
# bcrypt only accepts secrets up to 72 bytes
MAX_RECOVERY_CODE_LENGTH = 72


def generate_challenge(num_bytes: int = 32) -> str:
    """Random challenge value, base64url without padding (256 bits by default)."""
    return websafe_encode(secrets.token_bytes(num_bytes))


def generate_recovery_code(length: int = 20) -> str:
    return "".join(secrets.choice(RECOVERY_CODE_ALPHABET) for _ in range(length))


def generate_email_token() -> str:
    return secrets.token_hex(32)


def generate_id() -> str:
    return secrets.token_hex(16)


def hash_secret(value: str, rounds: int = 10) -> str:
    """Salted, slow hash for values that are only ever compared, never looked up."""
    return bcrypt.hashpw(value.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def check_secret(value: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(value.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


def sha256_hex(value: str) -> str:
    """Deterministic hash for values that are looked up by hash."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def b64url_encode(data: bytes) -> str:
    return websafe_encode(data)


def b64url_decode(data: str) -> bytes:
    return websafe_decode(data)


def issue_token(sub: str, secret: str, ttl_seconds: int = 3600) -> str:
    now = int(time.time())
    payload = {"sub": sub, "iat": now, "exp": now + ttl_seconds}
    return jwt.encode(payload, secret, algorithm=ALGO)


def decode_token(token: str, secret: str) -> dict | None:
    try:
        return jwt.decode(token, secret, algorithms=[ALGO])
    except jwt.PyJWTError:
        return None
