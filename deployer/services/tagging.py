"""
Tag Generator
=============
Derives the artifact version tag from the static app version and the
source revision:  v{version}-{first 7 chars of revision}

Deterministic: same (version, revision) → same tag, always.
A revision shorter than 7 characters is used whole.
"""
from deployer.core.constants import REVISION_TAG_LENGTH


def generate_version_tag(version: str, revision: str) -> str:
    """
    Build the image tag for a run.

    Parameters
    ----------
    version : str
        Semantic version, without a leading "v" (e.g. "1.0.0").
    revision : str
        Source revision identifier (commit SHA).

    Returns
    -------
    str
        e.g. ("1.0.0", "abcdef1234567") -> "v1.0.0-abcdef1"
    """
    return f"v{version}-{revision[:REVISION_TAG_LENGTH]}"


def image_reference(namespace: str, image_name: str, tag: str) -> str:
    """Fully qualified image reference: {namespace}/{image}:{tag}."""
    return f"{namespace}/{image_name}:{tag}"
