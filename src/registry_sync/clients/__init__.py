"""HTTP clients for the registry, downloads, OSV, search index and delivery channels."""

from registry_sync.clients.downloads import DownloadsClient
from registry_sync.clients.email import EmailClient
from registry_sync.clients.http import ApiError, BaseApiClient, classify_api_error
from registry_sync.clients.osv import OsvClient, VulnerabilityCounts
from registry_sync.clients.registry import RegistryClient, encode_package_name
from registry_sync.clients.search_index import SearchIndexClient
from registry_sync.clients.slack import SlackApiError, SlackClient

__all__ = [
    "ApiError",
    "BaseApiClient",
    "DownloadsClient",
    "EmailClient",
    "OsvClient",
    "RegistryClient",
    "SearchIndexClient",
    "SlackApiError",
    "SlackClient",
    "VulnerabilityCounts",
    "classify_api_error",
    "encode_package_name",
]
