"""
Store Registry - one store per resource type, built from configuration.

Created once at startup and handed to the UI layer by reference; there are no
module-level store singletons.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, NamedTuple, Optional, Type

from homecare.bus.events import EventBus
from homecare.config import config
from homecare.engine import seed
from homecare.engine.calendar import CalendarStore
from homecare.engine.policy import DEFAULT_FLAG
from homecare.engine.session import MemoryVault, SessionStore
from homecare.engine.store import ResourceStore
from homecare.models import Address, Booking, PaymentMethod, Plan, SecuritySettings, Service
from homecare.net.client import ApiClient
from homecare.net.dispatch import BackgroundDispatcher, Dispatcher, Job

logger = logging.getLogger(__name__)


class ResourceConfig(NamedTuple):
    attr: str
    resource_type: str
    model: Type
    seed: Callable
    exclusive_flag: Optional[str] = None


RESOURCES = [
    ResourceConfig('addresses', 'addresses', Address, seed.seed_addresses, DEFAULT_FLAG),
    ResourceConfig('payment_methods', 'payment-methods', PaymentMethod, seed.seed_payment_methods, DEFAULT_FLAG),
    ResourceConfig('services', 'services', Service, seed.seed_services),
    ResourceConfig('bookings', 'bookings', Booking, seed.seed_bookings),
    ResourceConfig('plans', 'plans', Plan, seed.seed_plans, 'current'),
    ResourceConfig('security', 'security-settings', SecuritySettings, seed.seed_security_settings),
]


@dataclass
class StoreRegistry:
    addresses: ResourceStore
    payment_methods: ResourceStore
    services: ResourceStore
    bookings: ResourceStore
    plans: ResourceStore
    security: ResourceStore
    calendar: CalendarStore
    session: SessionStore
    bus: EventBus
    dispatcher: Dispatcher

    def resource_stores(self) -> List:
        """Every collection store, calendar included, in registry order."""
        return [getattr(self, rc.attr) for rc in RESOURCES] + [self.calendar]

    def load_all(self) -> List[Job]:
        """Kick off the initial load of every collection store."""
        return [store.load() for store in self.resource_stores()]


def build_registry(client, dispatcher: Dispatcher, bus: Optional[EventBus] = None,
                   vault=None) -> StoreRegistry:
    """Wire one store per configured resource type onto a shared client, dispatcher and bus."""
    bus = bus if bus is not None else EventBus()
    stores = {
        rc.attr: ResourceStore(rc.resource_type, rc.model, client, dispatcher, rc.seed,
                               exclusive_flag=rc.exclusive_flag, bus=bus)
        for rc in RESOURCES
    }
    registry = StoreRegistry(
        calendar=CalendarStore(client, dispatcher, seed.seed_calendar, bus=bus),
        session=SessionStore(client, dispatcher, vault if vault is not None else MemoryVault(),
                             seed.seed_user, bus=bus),
        bus=bus,
        dispatcher=dispatcher,
        **stores,
    )
    logger.debug(f"Built registry with {len(stores) + 1} collection stores")
    return registry


def default_registry() -> StoreRegistry:
    """Registry against the configured API with a background dispatcher."""
    client = ApiClient(config.API_BASE_URL, api_key=config.API_KEY or None,
                       timeout=config.API_TIMEOUT_SECONDS)
    return build_registry(client, BackgroundDispatcher(max_workers=config.SYNC_WORKERS))
