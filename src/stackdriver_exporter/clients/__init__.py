from .auth import CredentialsAuthorizer, discover_default_project, load_default_credentials
from .monitoring_client import MonitoringClient, create_monitoring_client

__all__ = [
    'CredentialsAuthorizer',
    'MonitoringClient',
    'create_monitoring_client',
    'discover_default_project',
    'load_default_credentials',
]
