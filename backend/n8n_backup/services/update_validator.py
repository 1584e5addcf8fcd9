# backend/n8n_backup/services/update_validator.py
"""Trust checks for self-update: download URL gate and version ordering."""
import re
from typing import List

HTTPS_SCHEME = "https://"

_LEADING_DIGITS = re.compile(r"^\d+")


def is_valid_download_url(url: object, trusted_origin: str) -> bool:
    """
    True only for https URLs under trusted_origin without traversal sequences.

    Rejects ``../``, ``..\\`` and any doubled slash after the scheme, which
    would let a URL that starts with the trusted prefix escape it.
    """
    if not url or not isinstance(url, str):
        return False
    if not url.startswith(trusted_origin):
        return False
    if not url.startswith(HTTPS_SCHEME):
        return False
    if "../" in url or "..\\" in url:
        return False
    if "//" in url[len(HTTPS_SCHEME):]:
        return False
    return True


def _parts(version: str) -> List[int]:
    parts = []
    for piece in version.strip().lstrip("vV").split("."):
        match = _LEADING_DIGITS.match(piece)
        parts.append(int(match.group()) if match else 0)
    while len(parts) < 3:
        parts.append(0)
    return parts[:3]


def compare_versions(current: str, remote: str) -> int:
    """
    Compare two dotted versions, missing components counting as zero.

    Returns:
        1 if remote is newer, -1 if remote is older, 0 if equal
    """
    current_parts = _parts(current)
    remote_parts = _parts(remote)
    for cur, rem in zip(current_parts, remote_parts):
        if rem > cur:
            return 1
        if rem < cur:
            return -1
    return 0


def is_valid_version_format(version: str) -> bool:
    """Dotted numeric version, missing minor or patch allowed: 1.3, v1.2.3-beta.1."""
    return bool(re.match(r"^v?\d+(\.\d+){0,2}(-\w+)?(\.\d+)?$", version))
