"""
Bookings - turning a service selection into a service request.
"""

import logging
from typing import List, Optional, Sequence

from homecare.engine.calendar import CalendarStore, check_date
from homecare.engine.store import MutationResult, ResourceStore
from homecare.models import Booking, CalendarEntry, Service

logger = logging.getLogger(__name__)


def selected_services(services: Sequence[Service]) -> List[Service]:
    return [s for s in services if s.selected]


def build_request(services: Sequence[Service], day: str, time: Optional[str],
                  notes: str = '', urgent: bool = False) -> Booking:
    """Booking draft for the selected services. Raises ValueError if none are selected."""
    chosen = selected_services(services)
    if not chosen:
        raise ValueError('Please select at least one service')
    check_date(day)
    return Booking(
        service_ids=[s.id for s in chosen],
        date=day,
        time=time,
        notes=notes.strip(),
        urgent=urgent,
    )


def submit_request(bookings: ResourceStore, calendar: CalendarStore, services: Sequence[Service],
                   day: str, time: Optional[str], notes: str = '', urgent: bool = False) -> MutationResult:
    """
    Create the booking and put one calendar visit per selected service on day.
    Both are optimistic; the returned result is the booking's.
    """
    draft = build_request(services, day, time, notes, urgent)
    result = bookings.create(draft)
    for service in selected_services(services):
        calendar.add_service(day, CalendarEntry(
            name=service.name,
            time=time,
            description=draft.notes or None,
            status='requested',
        ))
    logger.info(f"Service request {result.record_id}: {len(draft.service_ids)} services on {day} {time}")
    return result
