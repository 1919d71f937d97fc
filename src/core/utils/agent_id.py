"""Agent ID generation using coolname for memorable identifiers."""

from coolname import generate_slug


def generate_agent_id(prefix: str = "") -> str:
    """Generate a human-readable agent ID.

    Several collectors may report into the same log sink (one per host page);
    a three-word slug is easier to grep for than a UUID.

    Examples:
        >>> generate_agent_id()
        'brave-golden-tiger'
        >>> generate_agent_id("collector")
        'collector-swift-blue-falcon'
    """
    slug = generate_slug(3)

    if prefix:
        return f"{prefix}-{slug}"

    return slug
