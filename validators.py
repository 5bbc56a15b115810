"""Form field checks for reservation and transfer bookings."""
import re

from exceptions import ValidationError

EMAIL_REGEX = re.compile(r'^\S+@\S+\.\S+$')
FLIGHT_NUMBER_REGEX = re.compile(r'^[A-Z]{2}\s\d+$')
TIME_REGEX = re.compile(r'^([01]\d|2[0-3]):[0-5]\d$')

PAYMENT_METHODS = {
    'cash_on_delivery': 'Cash on delivery',
    'card_on_delivery': 'Card payment on delivery',
    'card_online': 'Card payment online',
}

# Europe first, then the most common international codes
ALLOWED_DIAL_CODES = [
    '+30', '+31', '+32', '+33', '+34', '+350', '+351', '+352', '+353', '+354',
    '+355', '+356', '+357', '+358', '+359', '+36', '+370', '+371', '+372',
    '+373', '+374', '+375', '+376', '+377', '+378', '+380', '+381', '+382',
    '+383', '+385', '+386', '+387', '+389', '+39', '+40', '+41', '+420',
    '+421', '+423', '+43', '+44', '+45', '+46', '+47', '+48', '+49', '+90',
    '+1', '+7', '+20', '+27', '+52', '+55', '+61', '+64', '+81', '+82',
    '+86', '+91', '+971', '+972', '+974', '+966',
]


def normalize_phone_number(value):
    if not value:
        return ''
    return re.sub(r'[\s\-()]', '', value.strip())


def is_valid_phone_number(value):
    """International number: '+' then 7-15 digits with an allowed dial code."""
    normalized = normalize_phone_number(value)
    if not re.fullmatch(r'\+\d+', normalized):
        return False
    if not 8 <= len(normalized) <= 16:
        return False
    return any(normalized.startswith(code) for code in ALLOWED_DIAL_CODES)


def is_valid_email(value):
    return bool(value and EMAIL_REGEX.match(value.strip()))


def format_flight_number(value):
    """Upper-case and insert the space after the airline code: 'lh456' -> 'LH 456'."""
    if not value:
        return ''
    formatted = re.sub(r'\s+', ' ', value.upper()).strip()
    return re.sub(r'^([A-Z]{2})(\d)', r'\1 \2', formatted)


def is_valid_flight_number(value):
    # the field is optional
    if not value or not value.strip():
        return True
    return bool(FLIGHT_NUMBER_REGEX.match(value.strip()))


def validate_customer_info(name, email, phone, flight_number=None):
    errors = {}
    if not name or not name.strip():
        errors['name'] = 'Name is required'
    if not email or not email.strip():
        errors['email'] = 'Email is required'
    elif not is_valid_email(email):
        errors['email'] = 'Email is not valid'
    if not phone or not phone.strip():
        errors['phone'] = 'Phone number is required'
    elif not is_valid_phone_number(phone):
        errors['phone'] = 'Phone number must include an allowed country code, e.g. +40 712 345 678'
    if not is_valid_flight_number(flight_number):
        errors['flight_number'] = 'Flight number must look like "AA 1234"'
    return errors


def validate_reservation_form(form):
    """Check a submitted reservation form.

    ``form`` is any mapping (``request.form`` or a plain dict). Raises
    ``ValidationError`` with every failing field at once.
    """
    errors = validate_customer_info(
        form.get('customer_name'),
        form.get('customer_email'),
        form.get('customer_phone'),
        format_flight_number(form.get('flight_number')),
    )

    if not form.get('pickup_location'):
        errors['pickup_location'] = 'Pick-up location is required'
    if not form.get('restitution_location'):
        errors['restitution_location'] = 'Return location is required'
    if not form.get('start_date'):
        errors['start_date'] = 'Pick-up date is required'
    if not form.get('end_date'):
        errors['end_date'] = 'Return date is required'
    for field, label in (('pickup_time', 'Pick-up time'), ('restitution_time', 'Return time')):
        value = form.get(field)
        if not value:
            errors[field] = f'{label} is required'
        elif not TIME_REGEX.match(value):
            errors[field] = f'{label} must be HH:MM'

    if form.get('payment_method') not in PAYMENT_METHODS:
        errors['payment_method'] = 'Payment method is required'
    if not form.get('terms_accepted'):
        errors['terms_accepted'] = 'You must accept the terms and conditions'

    if errors:
        raise ValidationError(errors)
