"""
Pytest configuration and shared fixtures.

Key fixtures:
- repository: BrokerageRepository over a fresh InMemoryEntityStore
- notifier / dispatcher: in-memory notification client and its dispatcher
- sample_property / sample_sell_cycle / sample_buyer_requirement: a listing
  by agent_a (shared, 50M asking) and a matching requirement by agent_b
- seeded_repository: repository pre-loaded with the three samples

Everything runs in-process; no external services are needed.
"""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

# Load environment variables
from dotenv import load_dotenv

env_file = Path(__file__).parent.parent / '.env'
if env_file.exists():
    load_dotenv(env_file)

from brokerage_graph.clients import InMemoryEntityStore, InMemoryNotificationClient, NotificationDispatcher
from brokerage_graph.models import (
    Address,
    BuyerRequirement,
    Property,
    RentCycle,
    RentRequirement,
    SellCycle,
    SharingSettings,
)
from brokerage_graph.repository import BrokerageRepository

LISTING_AGENT = 'agent_a'
BUYER_AGENT = 'agent_b'


@pytest.fixture
def store() -> InMemoryEntityStore:
    return InMemoryEntityStore()


@pytest.fixture
def repository(store) -> BrokerageRepository:
    return BrokerageRepository(store)


@pytest.fixture
def notifier() -> InMemoryNotificationClient:
    return InMemoryNotificationClient()


@pytest.fixture
def dispatcher(notifier) -> NotificationDispatcher:
    return NotificationDispatcher(notifier)


@pytest.fixture
def sample_property() -> Property:
    """A 4-bed house in DHA Phase 5, Lahore."""
    return Property(
        id='prop_1',
        title='4 Bed House DHA Phase 5',
        property_type='house',
        address=Address(city='Lahore', area='DHA Phase 5', block='Block C'),
        price=50_000_000,
        area=2250,
        bedrooms=4,
        bathrooms=3,
        features=['Garage', 'Garden', 'Servant Quarter'],
        agent_id=LISTING_AGENT,
        agent_name='Ayesha',
        active_sell_cycle_ids=['sell_1'],
    )


@pytest.fixture
def sample_sell_cycle() -> SellCycle:
    """agent_a's shared listing of prop_1 at 50M."""
    return SellCycle(
        id='sell_1',
        property_id='prop_1',
        agent_id=LISTING_AGENT,
        agent_name='Ayesha',
        seller_id='seller_1',
        seller_name='Kamran Sheikh',
        asking_price=50_000_000,
        commission_rate=2.0,
        sharing=SharingSettings(is_shared=True, share_level='organization'),
    )


@pytest.fixture
def sample_buyer_requirement() -> BuyerRequirement:
    """agent_b's buyer looking for a house in DHA Phase 5, 45M-55M."""
    return BuyerRequirement(
        id='req_1',
        agent_id=BUYER_AGENT,
        agent_name='Bilal',
        buyer_id='buyer_1',
        buyer_name='Sara Malik',
        buyer_contact='+92-300-0000000',
        min_budget=45_000_000,
        max_budget=55_000_000,
        property_types=['house'],
        preferred_locations=['DHA Phase 5'],
        min_bedrooms=3,
        max_bedrooms=5,
        min_bathrooms=2,
        min_area=2000,
        max_area=2500,
        features=['garage'],
    )


@pytest.fixture
def sample_rent_cycle() -> RentCycle:
    return RentCycle(
        id='rent_1',
        property_id='prop_1',
        agent_id=LISTING_AGENT,
        agent_name='Ayesha',
        monthly_rent=250_000,
        sharing=SharingSettings(is_shared=True, share_level='organization'),
    )


@pytest.fixture
def sample_rent_requirement() -> RentRequirement:
    return RentRequirement(
        id='rentreq_1',
        agent_id=BUYER_AGENT,
        agent_name='Bilal',
        renter_name='Omar Farooq',
        min_budget=200_000,
        max_budget=300_000,
        property_types=['house'],
        preferred_locations=['DHA Phase 5'],
        min_bedrooms=3,
    )


@pytest.fixture
def seeded_repository(
    repository, sample_property, sample_sell_cycle, sample_buyer_requirement
) -> BrokerageRepository:
    repository.save_property(sample_property)
    repository.save_sell_cycle(sample_sell_cycle)
    repository.save_requirement(sample_buyer_requirement)
    return repository
