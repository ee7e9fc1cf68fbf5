"""
Data Models
Dataclasses for all synced entities. These are pure Python objects, no network logic.
A record whose id is None is a draft (not yet created anywhere).
"""

import dataclasses
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type, TypeVar

from homecare.net.errors import DecodeFailure

T = TypeVar('T')

# Store load states: idle -> loading -> (ready | degraded)
LOAD_IDLE = 'idle'
LOAD_LOADING = 'loading'
LOAD_READY = 'ready'
LOAD_DEGRADED = 'degraded'

# Mutation outcomes
STATUS_OPTIMISTIC = 'optimistic'
STATUS_SYNCED = 'synced'
STATUS_FAILED = 'failed'
STATUS_STALE = 'stale'

# Calendar entry kinds
KIND_SERVICE = 'service'
KIND_EVENT = 'event'


@dataclass
class Address:
    """Service address; at most one per collection is the default."""
    id: Optional[str] = None
    label: str = 'Home'
    street: str = ''
    apartment: Optional[str] = None
    city: str = ''
    state: str = ''
    zip_code: str = ''
    is_default: bool = False


@dataclass
class PaymentMethod:
    """Stored card; at most one per collection is the default."""
    id: Optional[str] = None
    type: str = ''
    last4: str = ''
    expiry: str = ''
    is_default: bool = False


@dataclass
class Service:
    """Bookable service from the catalogue"""
    id: Optional[str] = None
    name: str = ''
    frequency: Optional[str] = None
    selected: bool = False


@dataclass
class Booking:
    """Service request submitted from the services screen"""
    id: Optional[str] = None
    service_ids: List[str] = field(default_factory=list)
    date: Optional[str] = None
    time: Optional[str] = None
    notes: str = ''
    urgent: bool = False
    status: str = 'requested'


@dataclass
class PlanService:
    name: str = ''
    frequency: str = ''


@dataclass
class Plan:
    """Subscription tier; exactly one is the customer's current plan."""
    id: Optional[str] = None
    name: str = ''
    price: str = ''
    billing: str = 'monthly'
    start_date: Optional[str] = None
    features: List[str] = field(default_factory=list)
    services: List[PlanService] = field(default_factory=list)
    current: bool = False


@dataclass
class CalendarEntry:
    """A scheduled service visit or a personal event on a calendar date (YYYY-MM-DD)."""
    id: Optional[str] = None
    kind: str = KIND_SERVICE
    name: str = ''
    date: Optional[str] = None
    time: Optional[str] = None
    provider: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    status: str = 'confirmed'


@dataclass
class SecuritySettings:
    id: Optional[str] = None
    two_factor_enabled: bool = False
    biometric_enabled: bool = True


@dataclass
class User:
    id: Optional[str] = None
    name: str = ''
    email: str = ''
    avatar: Optional[str] = None


@dataclass
class MarkedDate:
    """Calendar widget marking for one date (derived, never stored)."""
    marked: bool = False
    dot_color: Optional[str] = None
    selected: bool = False
    selected_color: Optional[str] = None
    selected_text_color: Optional[str] = None


# =============================================================================
# PAYLOAD CODEC
# =============================================================================

_CAMEL_RE = re.compile(r'(?<!^)(?=[A-Z])')

# Nested list fields that decode into their own dataclass
_NESTED = {
    (Plan, 'services'): PlanService,
}


def _snake(key: str) -> str:
    """zipCode -> zip_code, isDefault -> is_default; snake_case passes through."""
    return _CAMEL_RE.sub('_', key).lower()


def field_names(cls) -> set:
    return {f.name for f in dataclasses.fields(cls)}


def from_payload(cls: Type[T], payload: Any) -> T:
    """
    Decode one JSON object into a record.
    Unknown keys are ignored; camelCase keys are accepted.
    Raises DecodeFailure when the payload is not an object or has no id.
    """
    if not isinstance(payload, dict):
        raise DecodeFailure(f"{cls.__name__} payload must be an object, got {type(payload).__name__}")

    names = field_names(cls)
    kwargs = {}
    for key, value in payload.items():
        name = _snake(key)
        if name in names:
            kwargs[name] = value

    if kwargs.get('id') in (None, ''):
        raise DecodeFailure(f"{cls.__name__} payload has no id: keys={sorted(payload)}")
    kwargs['id'] = str(kwargs['id'])

    for (owner, name), nested_cls in _NESTED.items():
        if owner is cls and isinstance(kwargs.get(name), list):
            kwargs[name] = [
                item if isinstance(item, nested_cls) else nested_cls(**{
                    k: v for k, v in item.items() if k in field_names(nested_cls)
                })
                for item in kwargs[name]
                if isinstance(item, (dict, nested_cls))
            ]

    try:
        return cls(**kwargs)
    except TypeError as e:
        raise DecodeFailure(f"{cls.__name__} payload does not fit the record: {e}")


def to_payload(record: Any) -> Dict[str, Any]:
    """
    Encode a record as a JSON-ready dict. Drafts are sent without an id.

    Keys are the snake_case field names; the API accepts them on create and
    update, and every patch the stores send uses the same names. Decoding
    takes either spelling.
    """
    data = dataclasses.asdict(record)
    if data.get('id') is None:
        data.pop('id', None)
    return data


def apply_patch(record: T, patch: Dict[str, Any]) -> T:
    """
    Return a copy of record with patch merged in.
    Raises ValueError for unknown field names or an attempt to change the id.
    """
    allowed = field_names(type(record)) - {'id'}
    invalid = set(patch) - allowed
    if invalid:
        raise ValueError(f"Invalid {type(record).__name__} fields: {invalid}")
    return dataclasses.replace(record, **patch)
