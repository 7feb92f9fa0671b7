# switchboard/core/__init__.py
"""
Core -- provider-agnostic domain logic.

Pure values and functions: the provider catalog, binding resolution, the
capability table and health vocabulary. Nothing here performs I/O.

Canonical imports:
    from switchboard.core import build_default_catalog, resolve_bindings
    from switchboard.core.tool_breaker import execute_tool_calls
    from switchboard.core.ports import ToolRegistry
"""
from switchboard.core.catalog import (  # noqa: F401
    CatalogRegistrationError,
    DiscoverySource,
    ProviderCatalog,
    ProviderDescriptor,
    build_default_catalog,
    default_capabilities,
)
from switchboard.core.bindings import (  # noqa: F401
    BillingSource,
    BindingSource,
    CredentialProfile,
    CredentialSource,
    ResolvedBinding,
    resolve_bindings,
    resolve_first_binding,
    strip_secret,
)
from switchboard.core.capabilities import (  # noqa: F401
    AuthScheme,
    ProtocolFamily,
    ProviderCapabilities,
    detect_provider,
    get_capabilities,
    normalize_model_for_provider,
)
from switchboard.core.health import HealthStatus  # noqa: F401
