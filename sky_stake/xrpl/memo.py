"""
Terms-signature memo format.

A stake payment carries two memo entries:

    [0] MemoType = hex("terms-signature"), MemoData = hex(<artifact>)
    [1] MemoType = hex("label"),           MemoData = hex("terms-signature")

The first carries the opaque terms signature artifact unmodified; the
second labels the payment as a terms-signed stake so indexers can find
it without decoding the artifact.

Rules:
    - MemoType/MemoData are uppercase hex of UTF-8 bytes.
    - The artifact is never parsed or re-encoded beyond hex.
    - Max decoded size across all memos: 1024 bytes (XRPL memo ceiling).
"""

from __future__ import annotations

# Memo type of the entry carrying the signature artifact.
TERMS_MEMO_TYPE = "terms-signature"

# Fixed label entry identifying the payment as a terms signature.
LABEL_MEMO_TYPE = "label"
TERMS_LABEL = "terms-signature"

# Maximum decoded memo size in bytes (sum over all entries).
MAX_MEMO_BYTES = 1024


def to_hex(text: str) -> str:
    """Uppercase hex of the UTF-8 bytes of ``text``."""
    return text.encode("utf-8").hex().upper()


def from_hex(data: str) -> str:
    """Inverse of to_hex()."""
    return bytes.fromhex(data).decode("utf-8")


def build_terms_memos(artifact: str) -> list[dict[str, dict[str, str]]]:
    """Build the two memo entries for a terms-signed payment.

    Args:
        artifact: Opaque terms signature artifact.

    Returns:
        XRPL ``Memos`` array (PascalCase keys).

    Raises:
        ValueError: If artifact is empty or the memos exceed MAX_MEMO_BYTES.
    """
    if not artifact:
        raise ValueError("signature artifact must be non-empty")

    decoded_size = sum(
        len(part.encode("utf-8"))
        for part in (TERMS_MEMO_TYPE, artifact, LABEL_MEMO_TYPE, TERMS_LABEL)
    )
    if decoded_size > MAX_MEMO_BYTES:
        raise ValueError(
            f"memos exceed {MAX_MEMO_BYTES} bytes (got {decoded_size} bytes)"
        )

    return [
        {
            "Memo": {
                "MemoType": to_hex(TERMS_MEMO_TYPE),
                "MemoData": to_hex(artifact),
            }
        },
        {
            "Memo": {
                "MemoType": to_hex(LABEL_MEMO_TYPE),
                "MemoData": to_hex(TERMS_LABEL),
            }
        },
    ]
