import hmac


def compare(a: str, b: str) -> bool:
    """
    Timing-safe string equality for credentials.

    Inputs of different length return False straight away, so only the
    length of the configured secret can leak. For equal-length inputs the
    work done does not depend on where the first differing byte is.
    """
    a_bytes = a.encode("utf-8")
    b_bytes = b.encode("utf-8")
    if len(a_bytes) != len(b_bytes):
        return False
    return hmac.compare_digest(a_bytes, b_bytes)
