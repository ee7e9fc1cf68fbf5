"""
Seed Data
Deterministic fallback records, one argument-free function per resource type.
Used when a fetch fails (degraded mode) and as fixtures in tests. Every call
returns fresh objects so callers can never alias each other's state.
"""

from typing import Dict, List

from homecare.models import (
    Address, PaymentMethod, Service, Booking, Plan, PlanService,
    CalendarEntry, SecuritySettings, User, KIND_SERVICE, KIND_EVENT,
)


def seed_addresses() -> List[Address]:
    return [
        Address(id='addr-1', label='Home', street='123 Main St', apartment='Apt 4B',
                city='New York', state='NY', zip_code='10001', is_default=True),
    ]


def seed_payment_methods() -> List[PaymentMethod]:
    return [
        PaymentMethod(id='pm-1', type='Visa', last4='4242', expiry='12/25', is_default=True),
        PaymentMethod(id='pm-2', type='Mastercard', last4='8888', expiry='09/24', is_default=False),
    ]


def seed_services() -> List[Service]:
    """The bookable catalogue, in display order."""
    names = [
        ('Home Cleaning', 'Weekly'),
        ('Window Cleaning', 'Quarterly'),
        ('Lawn & Garden', 'Bi-weekly'),
        ('Power Washing', 'Annual'),
        ('Solar Panel Cleaning', 'Quarterly'),
        ('Pool Cleaning', 'Weekly'),
        ('HVAC Services', 'Quarterly'),
        ('Plumbing', 'As needed'),
        ('Electrical', 'As needed'),
    ]
    return [Service(id=f'svc-{i}', name=name, frequency=freq) for i, (name, freq) in enumerate(names, 1)]


def seed_bookings() -> List[Booking]:
    return [
        Booking(id='bk-1', service_ids=['svc-1'], date='2025-10-15', time='10:00',
                notes='', urgent=False, status='confirmed'),
    ]


def seed_plans() -> List[Plan]:
    return [
        Plan(id='plan-basic', name='Basic', price='$149.99', features=[
            'Monthly home cleaning',
            'Quarterly lawn maintenance',
            'Annual HVAC inspection',
        ]),
        Plan(id='plan-standard', name='Standard', price='$199.99', features=[
            'Bi-weekly home cleaning',
            'Monthly lawn maintenance',
            'Quarterly HVAC service',
            'Annual window washing',
            'One service contractor visit',
        ]),
        Plan(id='plan-premium', name='Premium', price='$249.99', start_date='2025-07-15', features=[
            'Weekly home cleaning',
            'Bi-weekly lawn care',
            'Quarterly HVAC service',
            'Quarterly window washing',
            'Annual power washing',
            'Two service contractor visits',
        ], services=[
            PlanService('Weekly home cleaning', 'Every Monday'),
            PlanService('Bi-weekly lawn care', '1st and 3rd Wednesday'),
            PlanService('Quarterly HVAC service', 'Jan, Apr, Jul, Oct'),
            PlanService('Quarterly window washing', 'Jan, Apr, Jul, Oct'),
            PlanService('Annual power washing', 'April'),
        ], current=True),
        Plan(id='plan-luxury', name='Luxury', price='$399.99', features=[
            'Twice weekly home cleaning',
            'Weekly lawn and garden care',
            'Quarterly HVAC service',
            'Monthly window washing',
            'Quarterly power washing',
            'Unlimited service contractor visits',
        ]),
    ]


def seed_calendar() -> Dict[str, List[CalendarEntry]]:
    def visit(entry_id, day, name, provider, time):
        return CalendarEntry(id=entry_id, kind=KIND_SERVICE, name=name, date=day, time=time,
                             provider=provider, location='Main Residence')

    return {
        '2025-05-15': [visit('1', '2025-05-15', 'Home Cleaning', 'Jane Smith', '09:00')],
        '2025-05-20': [visit('2', '2025-05-20', 'Lawn Maintenance', 'Green Landscaping', '08:00')],
        '2025-05-23': [
            visit('3', '2025-05-23', 'Home Cleaning', 'Jane Smith', '10:00'),
            visit('4', '2025-05-23', 'Maintenance Check', 'Tech Solutions', '14:30'),
        ],
        '2025-05-27': [
            CalendarEntry(id='e1', kind=KIND_EVENT, name='Garden party', date='2025-05-27', time='16:00',
                          location='Backyard', description='Keep the lawn clear the day before'),
        ],
        '2025-05-28': [visit('5', '2025-05-28', 'Window Cleaning', 'Crystal Clear Services', '11:00')],
    }


def seed_security_settings() -> List[SecuritySettings]:
    return [SecuritySettings(id='security', two_factor_enabled=False, biometric_enabled=True)]


def seed_user() -> User:
    return User(
        id='12345',
        name='John Doe',
        email='john.doe@example.com',
        avatar='https://images.pexels.com/photos/220453/pexels-photo-220453.jpeg',
    )
