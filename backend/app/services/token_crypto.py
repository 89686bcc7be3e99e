from __future__ import annotations

import base64
import hashlib
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..settings import settings

_DEV_KEY = "local-development-pagination-key"


def _get_key() -> bytes:
    # Production refuses to start without PAGINATION_TOKEN_KEY (see Settings).
    raw = settings.pagination_token_key or _DEV_KEY
    return hashlib.sha256(str(raw).encode("utf-8")).digest()  # 32 bytes


def encrypt_string(plain_text: Any) -> str | None:
    """AES-GCM encrypt into `v1:<iv>:<tag>:<ciphertext>` (base64 parts)."""
    if plain_text is None:
        return None

    iv = os.urandom(12)
    ct_with_tag = AESGCM(_get_key()).encrypt(iv, str(plain_text).encode("utf-8"), None)
    ciphertext, tag = ct_with_tag[:-16], ct_with_tag[-16:]

    return ":".join(
        [
            "v1",
            base64.b64encode(iv).decode("ascii"),
            base64.b64encode(tag).decode("ascii"),
            base64.b64encode(ciphertext).decode("ascii"),
        ]
    )


def decrypt_string(cipher_text: Any) -> str | None:
    """Inverse of `encrypt_string`; None for anything tampered or malformed."""
    if not cipher_text:
        return None

    parts = str(cipher_text).split(":")
    if len(parts) != 4 or parts[0] != "v1":
        return None

    _, iv_b64, tag_b64, data_b64 = parts
    try:
        iv = base64.b64decode(iv_b64, validate=True)
        tag = base64.b64decode(tag_b64, validate=True)
        data = base64.b64decode(data_b64, validate=True)
    except ValueError:
        return None
    if len(iv) != 12 or len(tag) != 16:
        return None

    try:
        pt = AESGCM(_get_key()).decrypt(iv, data + tag, None)
    except InvalidTag:
        return None
    return pt.decode("utf-8")
