"""
Utility functions for access key generation
"""
import secrets
import string

KEY_ALPHABET = string.ascii_uppercase + string.digits


def generate_access_key(groups: int = 3, group_size: int = 4) -> str:
    """Generate a random access key like 'K7QX-M2PA-9ZRT'"""
    chars = "".join(secrets.choice(KEY_ALPHABET) for _ in range(groups * group_size))
    return "-".join(
        chars[i:i + group_size] for i in range(0, len(chars), group_size)
    )
