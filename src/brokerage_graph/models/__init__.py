"""Domain models for the Brokerage Graph core."""

from .cycles import (
    CLOSED_SELL_STATUSES,
    OPEN_OFFER_STATUSES,
    OPEN_RENT_STATUSES,
    OPEN_SELL_STATUSES,
    Offer,
    OfferInput,
    OfferSourceType,
    OfferStatus,
    PurchaseCycle,
    PurchaseCycleStatus,
    PurchaserType,
    RentCycle,
    RentCycleStatus,
    SellCycle,
    SellCycleStatus,
    ShareEvent,
    ShareLevel,
    SharingSettings,
)
from .deal import (
    Commission,
    CommissionSplit,
    Deal,
    DealAgent,
    DealAgents,
    DealCycles,
    DealFinancial,
    DealLifecycle,
    DealParties,
    DealParty,
    DealStage,
    DealStatus,
    DealTimeline,
    PurchaseCycleRef,
    SellCycleRef,
    StageProgress,
    StageStatus,
)
from .match import CycleType, MatchDetails, MatchStatus, PropertyMatch, match_id_for
from .notification import Notification, NotificationPriority, NotificationType
from .property import Address, CycleHistory, Property
from .requirement import (
    BuyerRequirement,
    RentRequirement,
    Requirement,
    RequirementStatus,
    requirement_adapter,
)

__all__ = [
    # Property
    'Address',
    'CycleHistory',
    'Property',
    # Cycles
    'CLOSED_SELL_STATUSES',
    'OPEN_OFFER_STATUSES',
    'OPEN_RENT_STATUSES',
    'OPEN_SELL_STATUSES',
    'Offer',
    'OfferInput',
    'OfferSourceType',
    'OfferStatus',
    'PurchaseCycle',
    'PurchaseCycleStatus',
    'PurchaserType',
    'RentCycle',
    'RentCycleStatus',
    'SellCycle',
    'SellCycleStatus',
    'ShareEvent',
    'ShareLevel',
    'SharingSettings',
    # Requirements
    'BuyerRequirement',
    'RentRequirement',
    'Requirement',
    'RequirementStatus',
    'requirement_adapter',
    # Matches
    'CycleType',
    'MatchDetails',
    'MatchStatus',
    'PropertyMatch',
    'match_id_for',
    # Deals
    'Commission',
    'CommissionSplit',
    'Deal',
    'DealAgent',
    'DealAgents',
    'DealCycles',
    'DealFinancial',
    'DealLifecycle',
    'DealParties',
    'DealParty',
    'DealStage',
    'DealStatus',
    'DealTimeline',
    'PurchaseCycleRef',
    'SellCycleRef',
    'StageProgress',
    'StageStatus',
    # Notifications
    'Notification',
    'NotificationPriority',
    'NotificationType',
]
