"""Runner functions and registry used by ``python -m registry_sync``."""
