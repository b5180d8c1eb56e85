"""
Brokerage Graph

Cross-agent property matching and the offer-acceptance transaction pipeline
for a real-estate brokerage. Shared listings are scored against other agents'
buyer and rent requirements; an accepted offer derives and links the
purchase cycle and deal that make up one transaction graph.
"""

__version__ = '0.1.0'

from .clients import (
    EntityStore,
    InMemoryEntityStore,
    InMemoryNotificationClient,
    JsonFileEntityStore,
    NotificationClient,
    NotificationDispatcher,
    create_store,
)
from .config import Config, config
from .errors import (
    AcceptanceError,
    BrokerageGraphError,
    CycleNotSharedError,
    DealIntegrityError,
    MatchingError,
    NotFoundError,
    OfferStateError,
    PipelineError,
    RollbackError,
    StoreError,
    ValidationError,
)
from .pipeline import (
    AcceptanceResult,
    CycleLifecycle,
    DealBuilder,
    MatchingEngine,
    MatchScorer,
    OfferPipeline,
    TransactionGraph,
    TransactionGraphResolver,
)
from .repository import BrokerageRepository, Collections

__all__ = [
    # Version
    '__version__',
    # Config
    'Config',
    'config',
    # Errors
    'AcceptanceError',
    'BrokerageGraphError',
    'CycleNotSharedError',
    'DealIntegrityError',
    'MatchingError',
    'NotFoundError',
    'OfferStateError',
    'PipelineError',
    'RollbackError',
    'StoreError',
    'ValidationError',
    # Collaborators
    'EntityStore',
    'InMemoryEntityStore',
    'InMemoryNotificationClient',
    'JsonFileEntityStore',
    'NotificationClient',
    'NotificationDispatcher',
    'create_store',
    # Repository
    'BrokerageRepository',
    'Collections',
    # Pipeline
    'AcceptanceResult',
    'CycleLifecycle',
    'DealBuilder',
    'MatchingEngine',
    'MatchScorer',
    'OfferPipeline',
    'TransactionGraph',
    'TransactionGraphResolver',
]
