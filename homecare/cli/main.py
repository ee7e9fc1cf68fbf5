#!/usr/bin/env python3
"""
Homecare Terminal CLI
Drives the stores the way a screen would: load, read, mutate, wait for sync.
Each invocation is one short session; nothing is kept between runs.
"""

import logging
from typing import Optional

import click

from homecare.engine import plans as plan_rules
from homecare.engine.calendar import check_date
from homecare.engine.registry import default_registry
from homecare.logging_config import configure_logging, log_call
from homecare.models import LOAD_DEGRADED, STATUS_FAILED, STATUS_SYNCED


def _date_option(ctx, param, value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    try:
        return check_date(value)
    except ValueError:
        raise click.BadParameter("use YYYY-MM-DD")


def _loaded(registry, *stores):
    """Load the given stores, wait for them, and warn about any running on seed data."""
    for store in stores:
        store.load()
    registry.dispatcher.settle()
    for store in stores:
        if store.load_state == LOAD_DEGRADED:
            click.echo(f"⚠️  {store.resource_type}: {store.error_message}", err=True)


def _report(registry, result, done: str):
    """Wait for a mutation's network half and say how it went."""
    registry.dispatcher.settle()
    if result.status == STATUS_FAILED:
        message = getattr(result.error, 'user_message', None) or str(result.error)
        if isinstance(result.error, KeyError):
            click.echo(f"Not found: {result.record_id}", err=True)
        else:
            click.echo(f"✓ {done} (saved locally, not synced: {message})")
    elif result.status == STATUS_SYNCED:
        click.echo(f"✓ {done}")
    else:
        click.echo(f"✓ {done} ({result.status})")


@click.group()
@click.pass_context
def cli(ctx):
    """Homecare - home services bookings, addresses, payments and calendar"""
    configure_logging()
    registry = default_registry()
    ctx.obj = registry
    ctx.call_on_close(registry.dispatcher.shutdown)


# =============================================================================
# STATUS
# =============================================================================

@cli.command('status')
@click.pass_obj
@log_call
def status(registry):
    """Load every store and show where its data came from"""
    stores = registry.resource_stores()
    for store in stores:
        store.load()
    registry.dispatcher.settle()

    click.echo(f"\n{'Resource':<20} {'State':<10} {'Records':<8} Note")
    click.echo("-" * 70)
    for store in stores:
        count = sum(len(v) for v in store.data.values()) if isinstance(store.data, dict) else len(store.data)
        click.echo(f"{store.resource_type:<20} {store.load_state:<10} {count:<8} {store.error_message or ''}")


# =============================================================================
# ADDRESSES / PAYMENT METHODS
# =============================================================================

@cli.group()
def addresses():
    """Manage service addresses"""
    pass


@addresses.command('list')
@click.pass_obj
@log_call
def addresses_list(registry):
    """List saved addresses"""
    store = registry.addresses
    _loaded(registry, store)
    if not store.data:
        click.echo("No addresses saved.")
        return

    click.echo(f"\n{'ID':<14} {'Label':<10} {'Street':<28} {'City':<15} Default")
    click.echo("-" * 80)
    for a in store.data:
        street = f"{a.street}, {a.apartment}" if a.apartment else a.street
        click.echo(f"{a.id:<14} {a.label[:9]:<10} {street[:27]:<28} {a.city[:14]:<15} {'★' if a.is_default else ''}")


@addresses.command('set-default')
@click.argument('address_id')
@click.pass_obj
@log_call
def addresses_set_default(registry, address_id):
    """Make an address the default"""
    _loaded(registry, registry.addresses)
    result = registry.addresses.set_default(address_id)
    _report(registry, result, f"Default address is now {address_id}")


@cli.group()
def payments():
    """Manage payment methods"""
    pass


@payments.command('list')
@click.pass_obj
@log_call
def payments_list(registry):
    """List payment methods"""
    store = registry.payment_methods
    _loaded(registry, store)
    if not store.data:
        click.echo("No payment methods saved.")
        return

    for m in store.data:
        marker = "  (default)" if m.is_default else ""
        click.echo(f"{m.id:<10} {m.type} ending in {m.last4}  exp {m.expiry}{marker}")


@payments.command('set-default')
@click.argument('method_id')
@click.pass_obj
@log_call
def payments_set_default(registry, method_id):
    """Make a payment method the default"""
    _loaded(registry, registry.payment_methods)
    result = registry.payment_methods.set_default(method_id)
    _report(registry, result, f"Default payment method is now {method_id}")


# =============================================================================
# CALENDAR
# =============================================================================

def _print_entries(index):
    for day in sorted(index):
        click.echo(f"\n{day}")
        for e in sorted(index[day], key=lambda e: e.time or ''):
            who = f" with {e.provider}" if e.provider else ""
            where = f" @ {e.location}" if e.location else ""
            click.echo(f"  {e.time or '--:--'}  [{e.id}] {e.name}{who}{where}")


@cli.group()
def calendar():
    """Scheduled services and events"""
    pass


@calendar.command('list')
@click.option('--date', 'day', callback=_date_option, help='Only this day (YYYY-MM-DD)')
@click.pass_obj
@log_call
def calendar_list(registry, day):
    """List scheduled services and events"""
    store = registry.calendar
    _loaded(registry, store)
    index = {day: store.entries_on(day)} if day else store.data
    index = {k: v for k, v in index.items() if v}
    if not index:
        click.echo("Nothing scheduled.")
        return
    _print_entries(index)


@calendar.command('marked')
@click.option('--selected', callback=_date_option, help='Highlight this day (YYYY-MM-DD)')
@click.pass_obj
@log_call
def calendar_marked(registry, selected):
    """Show which days carry a dot, and its color"""
    _loaded(registry, registry.calendar)
    marked = registry.calendar.get_marked_dates(selected_date=selected)
    for day in sorted(marked):
        m = marked[day]
        flags = " selected" if m.selected else ""
        click.echo(f"{day}  {m.dot_color or '-'}{flags}")


@calendar.command('search')
@click.argument('query')
@click.pass_obj
@log_call
def calendar_search(registry, query):
    """Search services and events by name, provider, location or description"""
    _loaded(registry, registry.calendar)
    results = registry.calendar.search(query)
    if not results:
        click.echo(f"No matches for '{query}'.")
        return
    _print_entries(results)


@calendar.command('reschedule')
@click.argument('entry_id')
@click.argument('new_date', callback=_date_option)
@click.argument('new_time')
@click.pass_obj
@log_call
def calendar_reschedule(registry, entry_id, new_date, new_time):
    """Move an entry to another day and time"""
    logger = logging.getLogger("homecare")
    _loaded(registry, registry.calendar)
    result = registry.calendar.reschedule(entry_id, new_date, new_time)
    if result.status == STATUS_FAILED and isinstance(result.error, KeyError):
        logger.warning(f"calendar_reschedule | entry_id={entry_id} not found")
    _report(registry, result, f"Rescheduled {entry_id} to {new_date} {new_time}")


# =============================================================================
# PLANS
# =============================================================================

@cli.group()
def plans():
    """Subscription plans"""
    pass


@plans.command('list')
@click.pass_obj
@log_call
def plans_list(registry):
    """List available plans"""
    _loaded(registry, registry.plans)
    for p in registry.plans.data:
        marker = " (current)" if p.current else ""
        click.echo(f"\n{p.name}{marker}: {p.price} / month")
        for feature in p.features:
            click.echo(f"  • {feature}")


@plans.command('next')
@click.pass_obj
@log_call
def plans_next(registry):
    """Show the upgrade from the current plan"""
    _loaded(registry, registry.plans)
    current = plan_rules.current_plan(registry.plans.data)
    if current is None:
        click.echo("No current plan.")
        return
    upgrade = plan_rules.next_tier(registry.plans.data, current.name)
    if upgrade is None:
        click.echo(f"{current.name} is already the top tier.")
        return
    click.echo(f"Upgrade {current.name} → {upgrade.name}: {upgrade.price} / month")


@plans.command('add-ons')
@click.pass_obj
@log_call
def plans_add_ons(registry):
    """Suggest services the current plan does not include"""
    _loaded(registry, registry.plans, registry.services)
    current = plan_rules.current_plan(registry.plans.data)
    if current is None:
        click.echo("No current plan.")
        return
    add_ons = plan_rules.available_add_ons(current.services, registry.services.data)
    if not add_ons:
        click.echo("Your plan already covers every service.")
        return
    for s in add_ons:
        click.echo(f"  + {s.name} ({s.frequency})")


# =============================================================================
# MAIN
# =============================================================================

if __name__ == '__main__':
    cli()
