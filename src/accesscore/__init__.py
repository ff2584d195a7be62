from .config import AccessConfig, LogLevel, load_access_config_from_env
from .exceptions import (
    AccessCoreError,
    AuthorityError,
    ConfigurationError,
    ExpandFailure,
    LoadFailure,
    ReconciliationFailure,
    SaveFailure,
    SaveInProgressError,
    SessionNotLoadedError,
    localized_message,
)
from .interfaces import PermissionAuthority
from .client import AccessAuthorityClient
from .logging import (
    safe_preview,
    redact_secrets,
    safe_log_value,
    AccessLogFormatter,
    SessionLoggerAdapter,
    setup_logging,
    get_session_logger,
)
from .permissions import (
    BulkEditor,
    DiffEngine,
    Effect,
    EffectResolver,
    NodePathRegistry,
    PermissionEditor,
    PermissionIndex,
    ScopeTreeCache,
    SessionState,
    ToggleScope,
)

__all__ = [
    'AccessConfig',
    'LogLevel',
    'load_access_config_from_env',
    'AccessCoreError',
    'AuthorityError',
    'ConfigurationError',
    'ExpandFailure',
    'LoadFailure',
    'ReconciliationFailure',
    'SaveFailure',
    'SaveInProgressError',
    'SessionNotLoadedError',
    'localized_message',
    'PermissionAuthority',
    'AccessAuthorityClient',
    'safe_preview',
    'redact_secrets',
    'safe_log_value',
    'AccessLogFormatter',
    'SessionLoggerAdapter',
    'setup_logging',
    'get_session_logger',
    'BulkEditor',
    'DiffEngine',
    'Effect',
    'EffectResolver',
    'NodePathRegistry',
    'PermissionEditor',
    'PermissionIndex',
    'ScopeTreeCache',
    'SessionState',
    'ToggleScope',
]
