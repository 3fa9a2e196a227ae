"""oauthkit - OAuth2 sign-in flow for web apps and native web-view shells.

This package runs the authorization-code flow the same way from a plain
browser and from the web view of a native shell, hands the result back
through a deeplink when needed, and ships a demo identity provider for
local development.
"""

from .config import (
    DemoProviderSettings,
    FlowSettings,
    LogSettings,
    OAuthKitSettings,
    ProviderSettings,
    ServerSettings,
    clear_settings,
    get_settings,
    reload_settings,
)
from .deeplink import (
    build_deeplink,
    build_secure_session_url,
    merge_callback_params,
    parse_callback_url,
)
from .environment import detect_environment, is_native_shell
from .exceptions import (
    AuthenticationError,
    ConfigurationError,
    ExchangeError,
    MissingDataError,
    OAuthKitException,
    ProtocolError,
    SessionReadError,
    SignInError,
    StateMismatchError,
    StorageUnavailableError,
)
from .flow import OAuthManager
from .providers import (
    MockProvider,
    OAuthProvider,
    StorageSessionProvider,
    create_provider_from_settings,
)
from .storage import MemoryStorage, Storage, UnavailableStorage, create_storage
from .types import (
    AuthFailure,
    AuthOutcome,
    AuthSuccess,
    CallbackParams,
    CallbackResult,
    FlowConfig,
    FlowState,
    RuntimeEnvironment,
    Session,
    SignInRequest,
    TokenSet,
    UserRecord,
)


__version__ = "0.1.0"

__all__ = [
    "AuthFailure",
    "AuthOutcome",
    "AuthSuccess",
    "AuthenticationError",
    "CallbackParams",
    "CallbackResult",
    "ConfigurationError",
    "DemoProviderSettings",
    "ExchangeError",
    "FlowConfig",
    "FlowSettings",
    "FlowState",
    "LogSettings",
    "MemoryStorage",
    "MissingDataError",
    "MockProvider",
    "OAuthKitException",
    "OAuthKitSettings",
    "OAuthManager",
    "OAuthProvider",
    "ProtocolError",
    "ProviderSettings",
    "RuntimeEnvironment",
    "ServerSettings",
    "Session",
    "SessionReadError",
    "SignInError",
    "SignInRequest",
    "StateMismatchError",
    "Storage",
    "StorageSessionProvider",
    "StorageUnavailableError",
    "TokenSet",
    "UnavailableStorage",
    "UserRecord",
    "__version__",
    "build_deeplink",
    "build_secure_session_url",
    "clear_settings",
    "create_provider_from_settings",
    "create_storage",
    "detect_environment",
    "get_settings",
    "is_native_shell",
    "merge_callback_params",
    "parse_callback_url",
    "reload_settings",
]
