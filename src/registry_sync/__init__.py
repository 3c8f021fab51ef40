"""
registry_sync: npm registry change-feed ingestion and notification delivery.

Subpackages:
    schemas    - pydantic job payloads and the search document model
    transform  - registry metadata -> search document
    clients    - aiohttp clients for the registry, downloads, OSV, Typesense, Resend, Slack
    changes    - continuous change-feed consumer and listener
    queue      - job queue: dedup, retry, per-topic rate limits, repeatable jobs
    sync       - sync job processors and search index synchronizer
    backfill   - resumable full-catalog backfill
    delivery   - email / chat delivery workers and digests
    runners    - worker runners and registry used by ``python -m registry_sync``
"""

__version__ = "0.1.0"
