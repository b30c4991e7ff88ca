"""Worker ID generation using coolnames for unique, memorable identifiers."""

from coolname import generate_slug


def generate_worker_id(prefix: str = "") -> str:
    """Generate a unique, memorable worker ID using coolnames.

    Examples:
        >>> generate_worker_id()
        'brave-golden-tiger'
        >>> generate_worker_id("audit-bridge")
        'audit-bridge-swift-blue-falcon'
    """
    coolname_id = generate_slug(3)

    if prefix:
        return f"{prefix}-{coolname_id}"

    return coolname_id
