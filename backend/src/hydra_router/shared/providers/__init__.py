"""Multi-provider routing framework.

Provides credential rotation, health tracking with penalty windows,
fallback chains and error classification for every model provider.
"""

from hydra_router.shared.providers.catalog import (
    ModelCatalog,
    ModelDescriptor,
    PriorityChainResolver,
)
from hydra_router.shared.providers.classifier import ErrorClassifier, sanitized_message
from hydra_router.shared.providers.credentials import (
    CredentialPool,
    environment_source,
    scan_credentials,
)
from hydra_router.shared.providers.gateway import ResilientGenerationGateway
from hydra_router.shared.providers.health import HealthMonitor
from hydra_router.shared.providers.types import (
    ClassifiedError,
    Credential,
    GenerationResult,
    HealthThresholds,
    ProviderHealthSnapshot,
)

__all__ = [
    "ClassifiedError",
    "Credential",
    "CredentialPool",
    "ErrorClassifier",
    "GenerationResult",
    "HealthMonitor",
    "HealthThresholds",
    "ModelCatalog",
    "ModelDescriptor",
    "PriorityChainResolver",
    "ProviderHealthSnapshot",
    "ResilientGenerationGateway",
    "environment_source",
    "sanitized_message",
    "scan_credentials",
]
