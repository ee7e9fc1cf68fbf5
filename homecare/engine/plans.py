"""
Plans - tier ordering and add-on suggestions for the plan screen.
Pure functions over plan and service records.
"""

import dataclasses
import logging
from typing import List, Optional, Sequence

from homecare.models import Plan, PlanService, Service

logger = logging.getLogger(__name__)

PLAN_ORDER = ['Basic', 'Standard', 'Premium', 'Luxury']

# Catalogue name -> every keyword group that marks it as covered by a plan
# service. A group matches when all of its words appear in the service name.
_COVERAGE = {
    'Home Cleaning': [('home', 'cleaning')],
    'Window Cleaning': [('window',)],
    'Lawn & Garden': [('lawn',), ('garden',)],
    'Power Washing': [('power', 'washing')],
    'Solar Panel Cleaning': [('solar',)],
    'Pool Cleaning': [('pool',)],
    'HVAC Services': [('hvac',)],
    'Plumbing': [('plumbing',)],
    'Electrical': [('electrical',)],
}


def current_plan(plans: Sequence[Plan]) -> Optional[Plan]:
    return next((p for p in plans if p.current), None)


def next_tier(plans: Sequence[Plan], current_name: str) -> Optional[Plan]:
    """The plan one step up from current_name; None at the top tier or for an unknown name."""
    if current_name not in PLAN_ORDER or current_name == PLAN_ORDER[-1]:
        return None
    wanted = PLAN_ORDER[PLAN_ORDER.index(current_name) + 1]
    return next((p for p in plans if p.name == wanted), None)


def covered_services(plan_services: Sequence[PlanService]) -> set:
    """Catalogue names already included in a plan, by keyword match on its service names."""
    covered = set()
    for service in plan_services:
        words = service.name.lower()
        for catalogue_name, groups in _COVERAGE.items():
            if any(all(w in words for w in group) for group in groups):
                covered.add(catalogue_name)
    logger.debug(f"covered_services: {sorted(covered)}")
    return covered


def available_add_ons(plan_services: Sequence[PlanService], catalogue: Sequence[Service],
                      limit: int = 3) -> List[Service]:
    """First `limit` catalogue services the plan does not cover, unselected."""
    covered = covered_services(plan_services)
    return [
        dataclasses.replace(s, selected=False)
        for s in catalogue if s.name not in covered
    ][:limit]
