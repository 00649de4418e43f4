"""API key masking for logs and API responses."""

MASK_CHAR = "•"


def mask_api_key(key: str, prefix_len: int = 4, suffix_len: int = 4) -> str:
    """
    Hide the middle of an API key.

    Args:
        key: The plaintext key
        prefix_len: Characters kept at the start
        suffix_len: Characters kept at the end

    Returns:
        Masked key such as ``sk-a•••••wxyz``. Keys too short to keep both ends
        are fully masked.
    """
    if not key or len(key) <= prefix_len + suffix_len:
        return MASK_CHAR * max(len(key or ""), 8)

    return f"{key[:prefix_len]}{MASK_CHAR * 5}{key[-suffix_len:]}"


def is_masked_key(key: str) -> bool:
    """Check whether a key string is a masked value rather than a real key."""
    return MASK_CHAR in (key or "")
