"""
Unit tests for plan tiers and add-on suggestions (homecare/engine/plans.py).
"""

from homecare.engine.plans import available_add_ons, covered_services, current_plan, next_tier
from homecare.engine.seed import seed_plans, seed_services
from homecare.models import PlanService


def test_current_plan_is_premium():
    assert current_plan(seed_plans()).name == 'Premium'


def test_no_current_plan():
    plans = seed_plans()
    for p in plans:
        p.current = False
    assert current_plan(plans) is None


def test_next_tier_steps_up():
    assert next_tier(seed_plans(), 'Premium').name == 'Luxury'
    assert next_tier(seed_plans(), 'Basic').name == 'Standard'


def test_next_tier_at_top_or_unknown():
    assert next_tier(seed_plans(), 'Luxury') is None
    assert next_tier(seed_plans(), 'Platinum') is None


def test_covered_services_for_premium():
    premium = current_plan(seed_plans())
    assert covered_services(premium.services) == {
        'Home Cleaning', 'Lawn & Garden', 'HVAC Services', 'Window Cleaning', 'Power Washing',
    }


def test_add_ons_for_premium():
    premium = current_plan(seed_plans())
    add_ons = available_add_ons(premium.services, seed_services())
    assert [s.name for s in add_ons] == ['Solar Panel Cleaning', 'Pool Cleaning', 'Plumbing']


def test_add_ons_are_unselected_copies():
    catalogue = seed_services()
    for s in catalogue:
        s.selected = True
    add_ons = available_add_ons([], catalogue, limit=2)
    assert [s.selected for s in add_ons] == [False, False]
    assert catalogue[0].selected is True


def test_add_ons_garden_keyword():
    covered = covered_services([PlanService('Weekly garden care', 'Fridays')])
    assert 'Lawn & Garden' in covered
