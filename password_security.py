"""
Password hashing for every user type (super admins, branch admins,
employees, stock managers) using bcrypt.
"""
import os

import bcrypt

# 12 rounds ≈ 250ms on modern hardware; each extra round doubles the cost
BCRYPT_ROUNDS = int(os.getenv('BCRYPT_ROUNDS', 12))


def hash_password(plaintext: str, rounds: int = BCRYPT_ROUNDS) -> str:
    """
    Hash a plaintext password using bcrypt with configurable work factor.

    Args:
        plaintext: The plaintext password to hash
        rounds: Number of bcrypt rounds (default: BCRYPT_ROUNDS)

    Returns:
        str: The bcrypt hash as a UTF-8 string, ready for MongoDB storage
    """
    if not plaintext:
        raise ValueError("Password cannot be empty")

    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(plaintext.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(plaintext: str, hashed: str) -> bool:
    """
    Verify a plaintext password against a bcrypt hash.
    Returns False for empty input or a malformed hash instead of raising.
    """
    if not plaintext or not hashed:
        return False

    try:
        return bcrypt.checkpw(
            plaintext.encode('utf-8'),
            hashed.encode('utf-8')
        )
    except (ValueError, TypeError):
        # Invalid hash format or encoding issue
        return False


def get_hash_info(hashed: str) -> dict:
    """
    Extract algorithm, rounds and salt from a bcrypt hash.

    Example:
        >>> get_hash_info('$2b$12$...')
        {'algorithm': '2b', 'rounds': 12, 'salt': '...', 'hash': '...'}
    """
    try:
        parts = hashed.split('$')
        if len(parts) >= 4:
            return {
                'algorithm': parts[1],
                'rounds': int(parts[2]),
                'salt': parts[3][:22] if len(parts[3]) >= 22 else parts[3],
                'hash': parts[3][22:] if len(parts[3]) > 22 else '',
            }
    except (AttributeError, IndexError, ValueError):
        pass

    return {'error': 'Invalid hash format'}


def needs_rehash(hashed: str, target_rounds: int = BCRYPT_ROUNDS) -> bool:
    """
    True when a stored hash uses fewer rounds than the current work factor.
    Login rehashes such passwords transparently.
    """
    info = get_hash_info(hashed)
    if 'rounds' in info:
        return info['rounds'] < target_rounds
    return True
