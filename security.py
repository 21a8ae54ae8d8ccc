import bcrypt

import config


def get_password_hash(password: str) -> str:
    """Hash a password with a fresh salt (BCRYPT_ROUNDS)."""
    # bcrypt only looks at the first 72 bytes
    password_bytes = password.encode("utf-8")[:72]
    hashed = bcrypt.hashpw(password_bytes, bcrypt.gensalt(rounds=config.BCRYPT_ROUNDS))
    return hashed.decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not plain_password or not hashed_password:
        return False
    password_bytes = plain_password.encode("utf-8")[:72]
    try:
        return bcrypt.checkpw(password_bytes, hashed_password.encode("utf-8"))
    except ValueError:
        # stored value is not a bcrypt hash
        return False
