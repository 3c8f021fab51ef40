"""Worker ID generation using coolname for unique, memorable identifiers."""

from coolname import generate_slug


def generate_worker_id(prefix: str = "") -> str:
    """Generate a readable worker ID such as ``sync-brave-golden-tiger``.

    Used for queue consumer client ids and log context so that concurrent
    workers of the same stage are easy to tell apart.
    """
    slug = generate_slug(3)
    return f"{prefix}-{slug}" if prefix else slug
