"""Rental and transfer pricing.

Everything here is a plain function over plain records: pricing tiers,
seasons and vehicle classes may be SQLAlchemy models, dicts or any object
exposing the same attribute names. Nothing in this module touches the
database, the request or the mail server, so the booking forms, the admin
dialogs and the JSON quote endpoints all share one source of truth.

Rental price::

    days            = calendar days (min 1, +1 past the late-return grace)
    price_per_day   = round(tier_price(days) * seasonal_multiplier)
    total           = price_per_day * days + location fees + protection
                      + add-ons + additional charges

Transfer price::

    extra_km        = max(distance_km - 15, 0)
    distance_charge = extra_km * tier_price_per_km(extra_km) * class_multiplier
    total           = base_fare + distance_charge   (x2 for round trips)
"""
import logging
import math
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP

from exceptions import PricingError, TierOverlapError

logger = logging.getLogger(__name__)

DEFAULT_PRICE_PER_DAY = 50
GRACE_HOURS = 2

BASE_KM_INCLUDED = 15
DEFAULT_BASE_FARE = 25
DEFAULT_TRANSFER_MULTIPLIER = 1.0
DEFAULT_PRICE_PER_KM = 1.0
TRANSFER_TYPES = ('one_way', 'round_trip')

# (min_extra_km, max_extra_km, price_per_km); None is open ended
DEFAULT_TRANSFER_TIERS = [
    (0, 25, 1.6),
    (25, 65, 1.2),
    (65, 185, 1.0),
    (185, 285, 0.97),
    (285, 385, 0.95),
    (385, None, 0.9),
]

EXTRA_KM_PACKAGE = 50
DEFAULT_ADDITIONAL_50KM_PRICE = 5
ADDON_PRICE_PER_DAY = 3

LOCATION_FEES = {
    'Aeroport Cluj-Napoca': 0,
    'Alba-Iulia': 80,
    'Bacau': 220,
    'Baia mare': 120,
    'Bistrita': 80,
    'Brasov': 180,
    'Bucuresti': 220,
    'Cluj-Napoca': 10,
    'Floresti': 10,
    'Oradea': 120,
    'Satu mare': 120,
    'Sibiu': 120,
    'Suceava': 220,
    'Targu Mures': 70,
    'Timisoara': 200,
}

WARRANTY_BY_TYPE = {
    'economy': 300,
    'compact': 400,
    'midsize': 500,
    'intermediate': 500,
    'standard': 600,
    'fullsize': 600,
    'suv': 800,
    'premium': 800,
    'luxury': 1000,
}
DEFAULT_WARRANTY = 500


def round_money(value, places=2):
    """Round half-up, the way prices are shown to customers."""
    exponent = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(exponent, rounding=ROUND_HALF_UP))


def _field(record, name, default=None):
    if isinstance(record, dict):
        return record.get(name, default)
    return getattr(record, name, default)


def _as_date(value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.strptime(value, '%Y-%m-%d').date()
        except ValueError:
            raise PricingError(f'Invalid date {value!r}, expected YYYY-MM-DD')
    raise PricingError(f'Invalid date {value!r}')


def parse_hour(value: str) -> int:
    """Hour part of an ``HH:MM`` string."""
    try:
        hour = int(value.split(':')[0])
    except (AttributeError, ValueError):
        raise PricingError(f'Invalid time {value!r}, expected HH:MM')
    if not 0 <= hour <= 23:
        raise PricingError(f'Invalid time {value!r}, expected HH:MM')
    return hour


# ---------------------------------------------------------------------------
# Rental duration and tiers

def calculate_rental_days(start_date, end_date, pickup_time=None, restitution_time=None) -> int:
    """Number of days charged for a rental.

    Same-day rentals count as one day. On longer rentals a return more than
    ``GRACE_HOURS`` after the pickup hour starts another day.
    """
    start_date, end_date = _as_date(start_date), _as_date(end_date)
    if end_date < start_date:
        raise PricingError('Return date must be on or after the pickup date')

    days = (end_date - start_date).days
    if days == 0:
        return 1
    if pickup_time and restitution_time:
        if parse_hour(restitution_time) > parse_hour(pickup_time) + GRACE_HOURS:
            days += 1
    return days


def sort_tiers(tiers):
    return sorted(tiers or [], key=lambda tier: _field(tier, 'min_days'))


def get_base_price_per_day(tiers) -> float:
    """Headline price: the tier for the shortest rentals."""
    ordered = sort_tiers(tiers)
    if not ordered:
        return DEFAULT_PRICE_PER_DAY
    return _field(ordered[0], 'price_per_day')


def get_price_for_duration(tiers, days: int) -> float:
    ordered = sort_tiers(tiers)
    if not ordered:
        return DEFAULT_PRICE_PER_DAY

    for tier in ordered:
        if _field(tier, 'min_days') <= days <= _field(tier, 'max_days'):
            return _field(tier, 'price_per_day')

    # gaps and rentals past the last tier use the nearest lower tier
    lower = [tier for tier in ordered if _field(tier, 'min_days') <= days]
    if lower:
        return _field(lower[-1], 'price_per_day')
    return _field(ordered[0], 'price_per_day')


def get_price_for_duration_with_season(tiers, days: int, multiplier: float = 1.0) -> float:
    return round_money(get_price_for_duration(tiers, days) * multiplier, 0)


def validate_pricing_tiers(tiers):
    """Check a vehicle's tier table before it is saved."""
    if not tiers:
        raise PricingError('At least one pricing tier is required')

    ordered = sort_tiers(tiers)
    for tier in ordered:
        min_days, max_days = _field(tier, 'min_days'), _field(tier, 'max_days')
        if min_days is None or max_days is None or min_days < 1:
            raise PricingError('Tier days must be at least 1')
        if max_days < min_days:
            raise PricingError(f'Tier {min_days}-{max_days}: max days must not be below min days')
        if _field(tier, 'price_per_day') is None or _field(tier, 'price_per_day') < 0:
            raise PricingError(f'Tier {min_days}-{max_days}: price per day must not be negative')

    for previous, current in zip(ordered, ordered[1:]):
        if _field(current, 'min_days') <= _field(previous, 'max_days'):
            raise TierOverlapError(
                f"Tier {_field(current, 'min_days')}-{_field(current, 'max_days')} overlaps "
                f"tier {_field(previous, 'min_days')}-{_field(previous, 'max_days')}"
            )
    return ordered


# ---------------------------------------------------------------------------
# Protection and add-ons

def calculate_scdw(days: int, daily_rate: float) -> float:
    """SCDW cost: two daily rates cover the first three days, then 6 for the
    first started three-day block and 5 for every further block."""
    base = daily_rate * 2
    if days <= 3:
        return base
    blocks = math.ceil((days - 3) / 3)
    return base + 6 + 5 * (blocks - 1)


def get_warranty_amount(warranty=None, vehicle_type=None) -> float:
    if warranty:
        return warranty
    return WARRANTY_BY_TYPE.get((vehicle_type or 'standard').lower(), DEFAULT_WARRANTY)


def get_location_fee(location) -> float:
    if not location:
        return 0
    return LOCATION_FEES.get(location, 0)


def calculate_extra_km_price(packages: int, price_per_package=None) -> float:
    if packages < 0:
        raise PricingError('Extra kilometer packages must not be negative')
    if price_per_package is None:
        price_per_package = DEFAULT_ADDITIONAL_50KM_PRICE
    return packages * price_per_package


# ---------------------------------------------------------------------------
# Seasons

def is_date_in_period(day, period_start, period_end) -> bool:
    """Match on month and day only; a period may wrap the new year."""
    key = (_as_date(day).month, _as_date(day).day)
    start = (_as_date(period_start).month, _as_date(period_start).day)
    end = (_as_date(period_end).month, _as_date(period_end).day)
    if start <= end:
        return start <= key <= end
    return key >= start or key <= end


def dates_in_range(start_date, end_date):
    start_date, end_date = _as_date(start_date), _as_date(end_date)
    return [start_date + timedelta(days=offset)
            for offset in range((end_date - start_date).days + 1)]


def _season_result(season):
    return {
        'multiplier': _field(season, 'multiplier'),
        'season_id': _field(season, 'id'),
        'season_name': _field(season, 'name'),
    }


def calculate_multiplier_for_date_range(start_date, end_date, active_seasons, current_season=None) -> dict:
    """Resolve the seasonal multiplier for a rental.

    The active season covering the most rental days wins. Without any
    overlap the admin-selected current season applies, and without that the
    multiplier is 1.0.
    """
    rental_days = dates_in_range(start_date, end_date)

    best_season, best_overlap = None, 0
    for season in active_seasons:
        if not _field(season, 'is_active', True):
            continue
        periods = _field(season, 'periods') or []
        overlap = sum(
            1 for day in rental_days
            if any(is_date_in_period(day, _field(p, 'start_date'), _field(p, 'end_date')) for p in periods)
        )
        if overlap > best_overlap:
            best_season, best_overlap = season, overlap

    if best_season is not None:
        return _season_result(best_season)
    if current_season is not None and _field(current_season, 'is_active', True):
        return _season_result(current_season)
    return {'multiplier': 1.0, 'season_id': None, 'season_name': None}


# ---------------------------------------------------------------------------
# Rental breakdown

def calculate_rental_price(tiers, start_date, end_date, pickup_time=None, restitution_time=None,
                           multiplier=1.0, warranty=None, vehicle_type=None, scdw_selected=False,
                           delivery_location=None, restitution_location=None,
                           snow_chains=False, child_seats_1to4=0, child_seats_5to12=0,
                           extra_km_packages=0, additional_50km_price=None,
                           additional_charges=()):
    """Full price breakdown for a self-drive rental."""
    if child_seats_1to4 < 0 or child_seats_5to12 < 0:
        raise PricingError('Child seat counts must not be negative')

    days = calculate_rental_days(start_date, end_date, pickup_time, restitution_time)

    price_per_day = get_price_for_duration(tiers, days)
    seasonal_price_per_day = get_price_for_duration_with_season(tiers, days, multiplier)
    base_price = seasonal_price_per_day * days
    price_before_season = price_per_day * days

    delivery_fee = get_location_fee(delivery_location)
    return_fee = get_location_fee(restitution_location)

    warranty_amount = get_warranty_amount(warranty, vehicle_type)
    scdw_price = calculate_scdw(days, round_money(get_base_price_per_day(tiers) * multiplier, 0))
    protection_cost = scdw_price if scdw_selected else 0
    deductible_amount = 0 if scdw_selected else warranty_amount

    snow_chains_price = days * ADDON_PRICE_PER_DAY if snow_chains else 0
    child_seat_1to4_price = child_seats_1to4 * days * ADDON_PRICE_PER_DAY
    child_seat_5to12_price = child_seats_5to12 * days * ADDON_PRICE_PER_DAY
    extra_km_price = calculate_extra_km_price(extra_km_packages, additional_50km_price)
    additional_features = snow_chains_price + child_seat_1to4_price + child_seat_5to12_price + extra_km_price

    charges_total = sum(_field(charge, 'amount') or 0 for charge in additional_charges)

    total = (base_price + delivery_fee + return_fee + protection_cost
             + additional_features + charges_total)

    return {
        'days': days,
        'price_per_day': price_per_day,
        'seasonal_multiplier': multiplier,
        'seasonal_price_per_day': seasonal_price_per_day,
        'base_price': round_money(base_price),
        'base_price_before_season': round_money(price_before_season),
        'seasonal_adjustment': round_money(base_price - price_before_season),
        'delivery_fee': delivery_fee,
        'return_fee': return_fee,
        'total_location_fees': delivery_fee + return_fee,
        'warranty_amount': warranty_amount,
        'scdw_price': round_money(scdw_price),
        'protection_cost': round_money(protection_cost),
        'deductible_amount': deductible_amount,
        'snow_chains_price': snow_chains_price,
        'child_seat_1to4_price': child_seat_1to4_price,
        'child_seat_5to12_price': child_seat_5to12_price,
        'extra_km_price': round_money(extra_km_price),
        'total_additional_features': round_money(additional_features),
        'additional_charges_total': round_money(charges_total),
        'total_price': round_money(total),
    }


# ---------------------------------------------------------------------------
# Transfers

def find_transfer_tier(tiers, extra_km):
    for tier in sorted(tiers or [], key=lambda t: _field(t, 'min_extra_km')):
        if not _field(tier, 'is_active', True):
            continue
        max_km = _field(tier, 'max_extra_km')
        if extra_km >= _field(tier, 'min_extra_km') and (max_km is None or extra_km < max_km):
            return tier
    return None


def calculate_transfer_price(distance_km, tiers, transfer_type='one_way', base_fare=None, class_multiplier=None):
    if distance_km is None or not math.isfinite(distance_km) or distance_km < 0:
        raise PricingError('Distance must be a non-negative number of kilometers')
    if transfer_type not in TRANSFER_TYPES:
        raise PricingError(f'Unknown transfer type {transfer_type!r}')

    if base_fare is None:
        base_fare = DEFAULT_BASE_FARE
    if class_multiplier is None:
        class_multiplier = DEFAULT_TRANSFER_MULTIPLIER
    trips = 2 if transfer_type == 'round_trip' else 1

    extra_km = max(distance_km - BASE_KM_INCLUDED, 0)
    if extra_km == 0:
        return {
            'base_fare': base_fare,
            'extra_km': 0,
            'distance_charge': 0,
            'total_price': round_money(base_fare * trips),
            'tier_price_per_km': 0,
        }

    tier = find_transfer_tier(tiers, extra_km)
    if tier is None:
        logger.warning('No transfer tier matches %s extra km, using %s/km', extra_km, DEFAULT_PRICE_PER_KM)
        tier_price = DEFAULT_PRICE_PER_KM
    else:
        tier_price = _field(tier, 'price_per_km')

    distance_charge = extra_km * tier_price * class_multiplier
    total = (base_fare + distance_charge) * trips

    return {
        'base_fare': base_fare,
        'extra_km': round_money(extra_km),
        'distance_charge': round_money(distance_charge),
        'total_price': round_money(total),
        'tier_price_per_km': tier_price,
    }


def _format_range(min_km, max_km):
    return f"{min_km}-{'∞' if max_km is None else max_km}"


def validate_transfer_tier(existing, min_extra_km, max_extra_km, price_per_km, exclude_id=None):
    """Reject bad ranges and ranges overlapping any other tier.

    ``existing`` includes inactive tiers; ``exclude_id`` skips the tier being
    edited.
    """
    if min_extra_km is None or min_extra_km < 0:
        raise PricingError('Min KM must not be negative')
    if max_extra_km is not None and max_extra_km <= min_extra_km:
        raise PricingError('Max KM must be greater than Min KM')
    if price_per_km is None or price_per_km <= 0:
        raise PricingError('Price per KM must be positive')

    new_max = math.inf if max_extra_km is None else max_extra_km
    for tier in existing:
        if exclude_id is not None and _field(tier, 'id') == exclude_id:
            continue
        tier_min, tier_max = _field(tier, 'min_extra_km'), _field(tier, 'max_extra_km')
        if min_extra_km < (math.inf if tier_max is None else tier_max) and new_max > tier_min:
            raise TierOverlapError(
                f'Range {_format_range(min_extra_km, max_extra_km)} overlaps with existing '
                f'tier {_format_range(tier_min, tier_max)}'
            )
