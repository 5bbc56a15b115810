# Import necessary modules
from flask import Flask, render_template, request, redirect, url_for, flash, jsonify, abort
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager, UserMixin, current_user, login_user, logout_user, login_required
from werkzeug.security import generate_password_hash, check_password_hash
from werkzeug.utils import secure_filename
from itsdangerous import URLSafeTimedSerializer, BadSignature
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from functools import wraps
from datetime import datetime, date
from collections import defaultdict
import os

import click

import pricing
import routing
from config import Config
from emails import mail, send_reservation_emails, send_transfer_emails, format_currency, format_duration, payment_method_label
from exceptions import PricingError, RoutingError, ValidationError, VehicleUnavailableError
from validators import validate_reservation_form, validate_customer_info, format_flight_number, PAYMENT_METHODS, TIME_REGEX

# Initialize Flask application
app = Flask(__name__)

# Load configuration from Config class
app.config.from_object(Config)

# Initialize Login Manager
login_manager = LoginManager()
login_manager.login_view = 'login'
login_manager.login_message_category = 'danger'
login_manager.init_app(app)

mail.init_app(app)

# Initialize database
db = SQLAlchemy(app)

RESERVATION_STATUSES = ('pending', 'confirmed', 'cancelled', 'completed')
TRANSFER_STATUSES = RESERVATION_STATUSES
# Reservations in these states hold the vehicle
BLOCKING_STATUSES = ('pending', 'confirmed')
VEHICLE_STATUSES = ('available', 'rented', 'maintenance')
VEHICLE_TYPES = ('sedan', 'suv', 'hatchback', 'sports', 'truck', 'van')
TRANSMISSIONS = ('automatic', 'manual')
FUEL_TYPES = ('petrol', 'diesel', 'electric', 'hybrid')
TRUTHY = ('1', 'true', 'on', 'yes')


# Database Models
class User(UserMixin, db.Model):
    """Customer or admin account"""
    __tablename__ = 'users'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password = db.Column(db.String(200), nullable=False)
    phone = db.Column(db.String(20))
    role = db.Column(db.String(20), nullable=False, default='renter')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    reservations = db.relationship('Reservation', backref='user', lazy=True)
    transfers = db.relationship('Transfer', backref='user', lazy=True)

    @property
    def is_admin(self):
        return self.role == 'admin'


class VehicleClass(db.Model):
    """Fleet class carrying the transfer fare settings"""
    __tablename__ = 'vehicle_classes'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), unique=True, nullable=False)
    display_name = db.Column(db.String(80))
    description = db.Column(db.Text)
    sort_index = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    additional_50km_price = db.Column(db.Float)
    transfer_base_fare = db.Column(db.Float)
    transfer_multiplier = db.Column(db.Float)
    vehicles = db.relationship('Vehicle', backref='vehicle_class', lazy=True)

    @property
    def label(self):
        return self.display_name or self.name


class Vehicle(db.Model):
    """Vehicle model for database"""
    __tablename__ = 'vehicles'
    id = db.Column(db.Integer, primary_key=True)
    make = db.Column(db.String(80), nullable=False)
    model = db.Column(db.String(80), nullable=False)
    year = db.Column(db.Integer)
    type = db.Column(db.String(20))
    seats = db.Column(db.Integer)
    transmission = db.Column(db.String(20))
    fuel_type = db.Column(db.String(20))
    engine_capacity = db.Column(db.Float)
    engine_type = db.Column(db.String(20))
    location = db.Column(db.String(120))
    features = db.Column(db.JSON, default=list)
    status = db.Column(db.String(20), nullable=False, default='available')
    warranty = db.Column(db.Float)
    class_id = db.Column(db.Integer, db.ForeignKey('vehicle_classes.id'))
    is_transfer_vehicle = db.Column(db.Boolean, nullable=False, default=False)
    transfer_seats = db.Column(db.Integer)
    image_url = db.Column(db.String(200))
    description = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    pricing_tiers = db.relationship('PricingTier', backref='vehicle', lazy=True,
                                    cascade='all, delete-orphan', order_by='PricingTier.min_days')
    reservations = db.relationship('Reservation', backref='vehicle', lazy=True)
    transfers = db.relationship('Transfer', backref='vehicle', lazy=True)

    @property
    def display_name(self):
        return f'{self.make} {self.model} {self.year}' if self.year else f'{self.make} {self.model}'

    @property
    def base_price_per_day(self):
        return pricing.get_base_price_per_day(self.pricing_tiers)

    @property
    def passenger_seats(self):
        return self.transfer_seats or self.seats


class PricingTier(db.Model):
    """Price per day for a range of rental days"""
    __tablename__ = 'pricing_tiers'
    id = db.Column(db.Integer, primary_key=True)
    vehicle_id = db.Column(db.Integer, db.ForeignKey('vehicles.id'), nullable=False)
    min_days = db.Column(db.Integer, nullable=False)
    max_days = db.Column(db.Integer, nullable=False)
    price_per_day = db.Column(db.Float, nullable=False)


class Season(db.Model):
    __tablename__ = 'seasons'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(80), nullable=False)
    description = db.Column(db.Text)
    multiplier = db.Column(db.Float, nullable=False, default=1.0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    periods = db.relationship('SeasonPeriod', backref='season', lazy=True,
                              cascade='all, delete-orphan', order_by='SeasonPeriod.start_date')


class SeasonPeriod(db.Model):
    """Date range of a season; only month and day are matched"""
    __tablename__ = 'season_periods'
    id = db.Column(db.Integer, primary_key=True)
    season_id = db.Column(db.Integer, db.ForeignKey('seasons.id'), nullable=False)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    description = db.Column(db.String(200))


class CurrentSeason(db.Model):
    """Admin-selected fallback season, at most one row"""
    __tablename__ = 'current_season'
    id = db.Column(db.Integer, primary_key=True)
    season_id = db.Column(db.Integer, db.ForeignKey('seasons.id'), nullable=False)
    set_at = db.Column(db.DateTime, default=datetime.utcnow)
    set_by = db.Column(db.String(120))
    season = db.relationship('Season')


class TransferPricingTier(db.Model):
    """Price per extra kilometer for a range of extra kilometers"""
    __tablename__ = 'transfer_pricing_tiers'
    id = db.Column(db.Integer, primary_key=True)
    min_extra_km = db.Column(db.Float, nullable=False)
    max_extra_km = db.Column(db.Float)
    price_per_km = db.Column(db.Float, nullable=False)
    sort_index = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)


class Reservation(db.Model):
    """Self-drive rental booking"""
    __tablename__ = 'reservations'
    id = db.Column(db.Integer, primary_key=True)
    reservation_number = db.Column(db.Integer, unique=True, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'))
    vehicle_id = db.Column(db.Integer, db.ForeignKey('vehicles.id'), nullable=False)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    pickup_time = db.Column(db.String(5), nullable=False)
    restitution_time = db.Column(db.String(5), nullable=False)
    pickup_location = db.Column(db.String(120), nullable=False)
    restitution_location = db.Column(db.String(120), nullable=False)
    payment_method = db.Column(db.String(30), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='pending')
    number_of_days = db.Column(db.Integer, nullable=False)
    price_per_day_used = db.Column(db.Float, nullable=False)
    seasonal_multiplier = db.Column(db.Float, nullable=False, default=1.0)
    season_id = db.Column(db.Integer)
    season_name = db.Column(db.String(80))
    is_scdw_selected = db.Column(db.Boolean, nullable=False, default=False)
    protection_cost = db.Column(db.Float, nullable=False, default=0)
    deductible_amount = db.Column(db.Float, nullable=False, default=0)
    snow_chains = db.Column(db.Boolean, nullable=False, default=False)
    child_seats_1to4 = db.Column(db.Integer, nullable=False, default=0)
    child_seats_5to12 = db.Column(db.Integer, nullable=False, default=0)
    extra_km_packages = db.Column(db.Integer, nullable=False, default=0)
    total_price = db.Column(db.Float, nullable=False)
    customer_name = db.Column(db.String(120), nullable=False)
    customer_email = db.Column(db.String(120), nullable=False)
    customer_phone = db.Column(db.String(20), nullable=False)
    customer_message = db.Column(db.Text)
    flight_number = db.Column(db.String(10))
    promo_code = db.Column(db.String(40))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    additional_charges = db.relationship('AdditionalCharge', backref='reservation', lazy=True,
                                         cascade='all, delete-orphan')


class AdditionalCharge(db.Model):
    """Manual charge added to a reservation by the office"""
    __tablename__ = 'additional_charges'
    id = db.Column(db.Integer, primary_key=True)
    reservation_id = db.Column(db.Integer, db.ForeignKey('reservations.id'), nullable=False)
    description = db.Column(db.String(200), nullable=False)
    amount = db.Column(db.Float, nullable=False)


class Transfer(db.Model):
    """VIP car-with-driver booking"""
    __tablename__ = 'transfers'
    id = db.Column(db.Integer, primary_key=True)
    transfer_number = db.Column(db.Integer, unique=True, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'))
    vehicle_id = db.Column(db.Integer, db.ForeignKey('vehicles.id'), nullable=False)
    transfer_type = db.Column(db.String(20), nullable=False, default='one_way')
    pickup_address = db.Column(db.String(250), nullable=False)
    pickup_lng = db.Column(db.Float)
    pickup_lat = db.Column(db.Float)
    dropoff_address = db.Column(db.String(250), nullable=False)
    dropoff_lng = db.Column(db.Float)
    dropoff_lat = db.Column(db.Float)
    pickup_date = db.Column(db.Date, nullable=False)
    pickup_time = db.Column(db.String(5), nullable=False)
    return_date = db.Column(db.Date)
    return_time = db.Column(db.String(5))
    passengers = db.Column(db.Integer, nullable=False, default=1)
    luggage_count = db.Column(db.Integer)
    distance_km = db.Column(db.Float, nullable=False)
    estimated_duration_minutes = db.Column(db.Integer, nullable=False, default=0)
    base_fare = db.Column(db.Float, nullable=False)
    distance_price = db.Column(db.Float, nullable=False)
    price_per_km = db.Column(db.Float, nullable=False)
    total_price = db.Column(db.Float, nullable=False)
    customer_name = db.Column(db.String(120), nullable=False)
    customer_email = db.Column(db.String(120), nullable=False)
    customer_phone = db.Column(db.String(20), nullable=False)
    customer_message = db.Column(db.Text)
    flight_number = db.Column(db.String(10))
    payment_method = db.Column(db.String(30), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='pending')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)


def allowed_file(filename):
    """Check if file extension is allowed"""
    return '.' in filename and \
           filename.rsplit('.', 1)[1].lower() in app.config['ALLOWED_EXTENSIONS']


def parse_date(value):
    """Parse YYYY-MM-DD, None when missing or malformed"""
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except (TypeError, ValueError):
        return None


def is_checked(values, name):
    return (values.get(name) or '').lower() in TRUTHY


def next_number(column):
    """Sequential booking number: highest so far plus one"""
    return (db.session.query(func.max(column)).scalar() or 0) + 1


def next_sort_index(column):
    current = db.session.query(func.max(column)).scalar()
    return 0 if current is None else current + 1


def is_vehicle_available(vehicle, start_date, end_date, exclude_reservation_id=None):
    """Check if vehicle is free for the given dates"""
    if vehicle.status != 'available':
        return False
    query = Reservation.query.filter(
        Reservation.vehicle_id == vehicle.id,
        Reservation.status.in_(BLOCKING_STATUSES),
        db.and_(
            Reservation.start_date <= end_date,
            Reservation.end_date >= start_date
        )
    )
    if exclude_reservation_id is not None:
        query = query.filter(Reservation.id != exclude_reservation_id)
    return query.count() == 0


def get_current_season():
    record = CurrentSeason.query.first()
    return record.season if record else None


def resolve_season(start_date, end_date):
    """Seasonal multiplier for a date range"""
    active = Season.query.filter_by(is_active=True).order_by(Season.id).all()
    return pricing.calculate_multiplier_for_date_range(start_date, end_date, active, get_current_season())


def current_multiplier():
    season = get_current_season()
    if season and season.is_active:
        return season.multiplier
    return 1.0


def rental_options(values):
    """Pricing options from a booking form or a quote query string"""
    return dict(
        pickup_time=values.get('pickup_time') or None,
        restitution_time=values.get('restitution_time') or None,
        delivery_location=values.get('pickup_location') or None,
        restitution_location=values.get('restitution_location') or None,
        scdw_selected=is_checked(values, 'scdw'),
        snow_chains=is_checked(values, 'snow_chains'),
        child_seats_1to4=values.get('child_seats_1to4', 0, type=int),
        child_seats_5to12=values.get('child_seats_5to12', 0, type=int),
        extra_km_packages=values.get('extra_km_packages', 0, type=int),
    )


def quote_rental(vehicle, start_date, end_date, options, multiplier=None, additional_charges=()):
    """Price breakdown for a vehicle; resolves the season unless a multiplier is given"""
    season = {'multiplier': multiplier, 'season_id': None, 'season_name': None}
    if multiplier is None:
        season = resolve_season(start_date, end_date)
    vehicle_class = vehicle.vehicle_class
    breakdown = pricing.calculate_rental_price(
        vehicle.pricing_tiers, start_date, end_date,
        multiplier=season['multiplier'],
        warranty=vehicle.warranty,
        vehicle_type=vehicle.type,
        additional_50km_price=vehicle_class.additional_50km_price if vehicle_class else None,
        additional_charges=additional_charges,
        **options
    )
    breakdown['season_id'] = season['season_id']
    breakdown['season_name'] = season['season_name']
    return breakdown


def transfer_tiers(active_only=True):
    query = TransferPricingTier.query
    if active_only:
        query = query.filter_by(is_active=True)
    return query.order_by(TransferPricingTier.min_extra_km).all()


def quote_transfer(vehicle_class, distance_km, transfer_type):
    return pricing.calculate_transfer_price(
        distance_km,
        transfer_tiers(),
        transfer_type,
        base_fare=vehicle_class.transfer_base_fare if vehicle_class else None,
        class_multiplier=vehicle_class.transfer_multiplier if vehicle_class else None,
    )


def resolve_route(values):
    """Distance and duration from the form, or measured from coordinates"""
    distance_km = values.get('distance_km', type=float)
    if distance_km is not None:
        return distance_km, values.get('estimated_duration_minutes', 0, type=int)
    try:
        origin = (float(values['pickup_lng']), float(values['pickup_lat']))
        destination = (float(values['dropoff_lng']), float(values['dropoff_lat']))
    except (KeyError, ValueError):
        raise RoutingError('Pick-up and drop-off locations are required')
    route = routing.get_route_info(origin, destination, app.config['MAPBOX_TOKEN'],
                                   timeout=app.config['MAPBOX_TIMEOUT'])
    return route['distance_km'], route['duration_minutes']


def seed_default_transfer_tiers():
    if TransferPricingTier.query.count() > 0:
        raise PricingError('Pricing tiers already exist. Delete them first to reseed.')
    for index, (min_km, max_km, price) in enumerate(pricing.DEFAULT_TRANSFER_TIERS):
        db.session.add(TransferPricingTier(min_extra_km=min_km, max_extra_km=max_km,
                                           price_per_km=price, sort_index=index))
    db.session.commit()


def generate_confirmation_token(kind, record_id):
    """Signed link so guests can open their booking"""
    serializer = URLSafeTimedSerializer(app.config['SECRET_KEY'])
    return serializer.dumps({'kind': kind, 'id': record_id}, salt='booking-confirmation')


def verify_confirmation_token(token, kind, expiration=None):
    serializer = URLSafeTimedSerializer(app.config['SECRET_KEY'])
    try:
        data = serializer.loads(
            token,
            salt='booking-confirmation',
            max_age=expiration or app.config['CONFIRMATION_MAX_AGE']
        )
    except BadSignature as e:
        app.logger.warning(f"Confirmation token rejected: {e}")
        return None
    if data.get('kind') != kind:
        return None
    return data.get('id')


def parse_pricing_tiers(form):
    """Tier rows from the vehicle form's parallel inputs"""
    rows = zip(form.getlist('tier_min_days'), form.getlist('tier_max_days'), form.getlist('tier_price'))
    tiers = []
    for min_days, max_days, price in rows:
        if not (min_days or max_days or price):
            continue
        try:
            tiers.append({'min_days': int(min_days), 'max_days': int(max_days), 'price_per_day': float(price)})
        except ValueError:
            raise PricingError('Pricing tier values must be numbers')
    return pricing.validate_pricing_tiers(tiers)


def parse_season_periods(form):
    rows = zip(form.getlist('period_start'), form.getlist('period_end'), form.getlist('period_description'))
    periods = []
    for start, end, description in rows:
        if not (start or end):
            continue
        start_date, end_date = parse_date(start), parse_date(end)
        if not start_date or not end_date:
            raise PricingError('Season periods need a start and an end date')
        periods.append(SeasonPeriod(start_date=start_date, end_date=end_date, description=description or None))
    if not periods:
        raise PricingError('A season needs at least one period')
    return periods


def parse_additional_charges(form):
    charges = []
    for description, amount in zip(form.getlist('charge_description'), form.getlist('charge_amount')):
        if not description and not amount:
            continue
        try:
            charges.append(AdditionalCharge(description=description.strip(), amount=float(amount)))
        except ValueError:
            raise PricingError('Additional charge amounts must be numbers')
    return charges


def apply_rental_breakdown(reservation, breakdown):
    reservation.number_of_days = breakdown['days']
    reservation.price_per_day_used = breakdown['seasonal_price_per_day']
    reservation.protection_cost = breakdown['protection_cost']
    reservation.deductible_amount = breakdown['deductible_amount']
    reservation.total_price = breakdown['total_price']


def build_reservation(vehicle, values, user=None, check_past=True):
    """Validate a booking form, price it and return an unsaved reservation"""
    validate_reservation_form(values)
    start_date, end_date = parse_date(values['start_date']), parse_date(values['end_date'])
    errors = {}
    if not start_date:
        errors['start_date'] = 'Invalid date, use YYYY-MM-DD'
    if not end_date:
        errors['end_date'] = 'Invalid date, use YYYY-MM-DD'
    if start_date and end_date and end_date < start_date:
        errors['end_date'] = 'Return date must be after the pick-up date'
    if check_past and start_date and start_date < date.today():
        errors['start_date'] = 'Pick-up date cannot be in the past'
    if errors:
        raise ValidationError(errors)

    if not is_vehicle_available(vehicle, start_date, end_date):
        raise VehicleUnavailableError()

    options = rental_options(values)
    breakdown = quote_rental(vehicle, start_date, end_date, options)
    reservation = Reservation(
        reservation_number=next_number(Reservation.reservation_number),
        user_id=user.id if user else None,
        vehicle_id=vehicle.id,
        start_date=start_date,
        end_date=end_date,
        pickup_time=values['pickup_time'],
        restitution_time=values['restitution_time'],
        pickup_location=values['pickup_location'],
        restitution_location=values['restitution_location'],
        payment_method=values['payment_method'],
        status='pending',
        seasonal_multiplier=breakdown['seasonal_multiplier'],
        season_id=breakdown['season_id'],
        season_name=breakdown['season_name'],
        is_scdw_selected=options['scdw_selected'],
        snow_chains=options['snow_chains'],
        child_seats_1to4=options['child_seats_1to4'],
        child_seats_5to12=options['child_seats_5to12'],
        extra_km_packages=options['extra_km_packages'],
        customer_name=values['customer_name'].strip(),
        customer_email=values['customer_email'].strip(),
        customer_phone=values['customer_phone'].strip(),
        customer_message=values.get('customer_message') or None,
        flight_number=format_flight_number(values.get('flight_number')) or None,
        promo_code=values.get('promo_code') or None,
    )
    apply_rental_breakdown(reservation, breakdown)
    return reservation


def time_ago(dt):
    """Convert datetime to relative time string"""
    now = datetime.utcnow()
    diff = now - dt

    seconds = diff.total_seconds()
    days = divmod(seconds, 86400)
    hours = divmod(days[1], 3600)
    minutes = divmod(hours[1], 60)
    if days[0] > 0:
        return f"{int(days[0])} days ago"
    elif hours[0] > 0:
        return f"{int(hours[0])} hours ago"
    elif minutes[0] > 0:
        return f"{int(minutes[0])} minutes ago"
    else:
        return "just now"


# Register Jinja2 filters
app.jinja_env.filters['time_ago'] = time_ago
app.jinja_env.filters['currency'] = format_currency
app.jinja_env.filters['duration'] = format_duration
app.jinja_env.filters['payment_method'] = payment_method_label


@app.context_processor
def inject_today():
    """Make today's date available in all templates"""
    return {'today': date.today()}


@app.context_processor
def inject_choices():
    return dict(
        locations=sorted(pricing.LOCATION_FEES),
        payment_methods=PAYMENT_METHODS,
        vehicle_types=VEHICLE_TYPES,
        transmissions=TRANSMISSIONS,
        fuel_types=FUEL_TYPES,
        vehicle_statuses=VEHICLE_STATUSES,
        reservation_statuses=RESERVATION_STATUSES,
    )


# User loader for Flask-Login
@login_manager.user_loader
def load_user(user_id):
    """Load user for Flask-Login"""
    return db.session.get(User, int(user_id))


def admin_required(f):
    """Decorator to ensure user is admin"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            flash('Please log in to access this page.', 'danger')
            return redirect(url_for('login'))
        if not current_user.is_admin:
            flash('You do not have permission to access this page.', 'danger')
            return redirect(url_for('user_dashboard'))
        return f(*args, **kwargs)
    return decorated_function


# Main application routes
@app.route('/')
def index():
    """Main landing page"""
    vehicles = Vehicle.query.filter_by(status='available').order_by(Vehicle.created_at.desc()).limit(6).all()
    return render_template('index.html', vehicles=vehicles, multiplier=current_multiplier())


@app.route('/login', methods=['GET', 'POST'])
def login():
    """User login route"""
    if request.method == 'POST':
        email = request.form['email'].strip().lower()
        password = request.form['password']

        user = User.query.filter_by(email=email).first()

        if user and check_password_hash(user.password, password):
            login_user(user)
            flash('Login successful!', 'success')
            if user.is_admin:
                return redirect(url_for('admin_dashboard'))
            return redirect(url_for('user_dashboard'))
        flash('Invalid email or password.', 'danger')

    return render_template('auth/login.html')


@app.route('/logout')
@login_required
def logout():
    """User logout route"""
    logout_user()
    flash('You have been logged out successfully.', 'success')
    return redirect(url_for('index'))


@app.route('/register', methods=['GET', 'POST'])
def register():
    """User registration route"""
    if request.method == 'POST':
        name = request.form['name'].strip()
        email = request.form['email'].strip().lower()
        password = request.form['password']
        confirm_password = request.form['confirm_password']
        phone = request.form.get('phone', '').strip()

        if password != confirm_password:
            flash('Passwords do not match.', 'danger')
            return redirect(url_for('register'))
        errors = validate_customer_info(name, email, phone)
        if not phone:
            # phone is optional on the account
            errors.pop('phone', None)
        if errors:
            flash(' '.join(errors.values()), 'danger')
            return redirect(url_for('register'))
        if User.query.filter_by(email=email).first():
            flash('Email already registered. Please use a different email or login.', 'danger')
            return redirect(url_for('register'))

        new_user = User(name=name, email=email, password=generate_password_hash(password), phone=phone or None)
        try:
            db.session.add(new_user)
            db.session.commit()
            flash('Registration successful! You can now log in.', 'success')
            return redirect(url_for('login'))
        except SQLAlchemyError as e:
            db.session.rollback()
            flash('An error occurred while registering. Please try again.', 'danger')
            app.logger.error(f"Registration error: {str(e)}")

    return render_template('auth/register.html')


# Vehicle search and booking
@app.route('/cars')
def search_cars():
    """Vehicle search with availability for the requested dates"""
    vehicle_type = request.args.get('type', '')
    transmission = request.args.get('transmission', '')
    fuel_type = request.args.get('fuel_type', '')
    class_id = request.args.get('class_id', type=int)
    min_price = request.args.get('min_price', type=float)
    max_price = request.args.get('max_price', type=float)
    start_date = parse_date(request.args.get('start_date'))
    end_date = parse_date(request.args.get('end_date'))
    sort = request.args.get('sort', '')

    query = Vehicle.query.filter(Vehicle.status == 'available')
    if vehicle_type:
        query = query.filter(Vehicle.type == vehicle_type)
    if transmission:
        query = query.filter(Vehicle.transmission == transmission)
    if fuel_type:
        query = query.filter(Vehicle.fuel_type == fuel_type)
    if class_id:
        query = query.filter(Vehicle.class_id == class_id)
    vehicles = query.order_by(Vehicle.created_at.desc()).all()

    if min_price is not None:
        vehicles = [v for v in vehicles if v.base_price_per_day >= min_price]
    if max_price is not None:
        vehicles = [v for v in vehicles if v.base_price_per_day <= max_price]

    multiplier = current_multiplier()
    if start_date and end_date:
        if end_date < start_date:
            flash('End date must be after start date.', 'danger')
        else:
            vehicles = [v for v in vehicles if is_vehicle_available(v, start_date, end_date)]
            multiplier = resolve_season(start_date, end_date)['multiplier']

    if sort == 'price_asc':
        vehicles.sort(key=lambda v: v.base_price_per_day)
    elif sort == 'price_desc':
        vehicles.sort(key=lambda v: v.base_price_per_day, reverse=True)

    classes = VehicleClass.query.filter_by(is_active=True).order_by(VehicleClass.sort_index).all()
    return render_template(
        'cars/search.html',
        vehicles=vehicles,
        classes=classes,
        multiplier=multiplier,
        search_params=request.args,
        total_cars=len(vehicles)
    )


@app.route('/cars/<int:vehicle_id>')
def car_details(vehicle_id):
    """Vehicle details page with its tier table"""
    vehicle = db.get_or_404(Vehicle, vehicle_id)
    start_date = parse_date(request.args.get('start_date'))
    end_date = parse_date(request.args.get('end_date'))

    quote = None
    multiplier = current_multiplier()
    if start_date and end_date:
        try:
            quote = quote_rental(vehicle, start_date, end_date, rental_options(request.args))
            multiplier = quote['seasonal_multiplier']
        except PricingError as e:
            flash(e.message, 'danger')

    tiers = [{
        'min_days': tier.min_days,
        'max_days': tier.max_days,
        'price_per_day': pricing.round_money(tier.price_per_day * multiplier, 0),
    } for tier in vehicle.pricing_tiers]
    return render_template('cars/detail.html', vehicle=vehicle, tiers=tiers, quote=quote, multiplier=multiplier)


@app.route('/reservation/<int:vehicle_id>', methods=['GET', 'POST'])
def new_reservation(vehicle_id):
    """Create a reservation request"""
    vehicle = db.get_or_404(Vehicle, vehicle_id)
    errors = {}

    if request.method == 'POST':
        user = current_user if current_user.is_authenticated else None
        status = 400
        try:
            reservation = build_reservation(vehicle, request.form, user=user)
            db.session.add(reservation)
            db.session.commit()
        except ValidationError as e:
            errors = e.errors
            flash('Please correct the highlighted fields.', 'danger')
        except VehicleUnavailableError as e:
            status = 409
            flash(e.message, 'danger')
        except PricingError as e:
            flash(e.message, 'danger')
        except SQLAlchemyError as e:
            db.session.rollback()
            status = 500
            app.logger.error(f"Reservation error: {str(e)}")
            flash('An error occurred while saving your reservation. Please try again.', 'danger')
        else:
            app.logger.info(f"Reservation #{reservation.reservation_number} created for vehicle {vehicle.id}")
            send_reservation_emails(reservation)
            flash('Reservation request submitted!', 'success')
            token = generate_confirmation_token('reservation', reservation.id)
            return redirect(url_for('reservation_confirmation', token=token))
        return render_template('reservation/new.html', vehicle=vehicle, errors=errors, form=request.form), status

    return render_template('reservation/new.html', vehicle=vehicle, errors=errors, form=request.args)


@app.route('/reservation/confirmation/<token>')
def reservation_confirmation(token):
    reservation_id = verify_confirmation_token(token, 'reservation')
    if reservation_id is None:
        flash('Invalid or expired confirmation link', 'danger')
        return redirect(url_for('index'))
    reservation = db.get_or_404(Reservation, reservation_id)
    return render_template('reservation/confirmation.html', reservation=reservation)


# Transfers
@app.route('/transfers')
def transfer_search():
    """Transfer vehicles with prices for the requested route"""
    transfer_type = request.args.get('transfer_type', 'one_way')
    passengers = request.args.get('passengers', 1, type=int)
    quotes = []
    route = None

    if request.args.get('distance_km') or request.args.get('pickup_lng'):
        try:
            distance_km, duration = resolve_route(request.args)
            route = {'distance_km': distance_km, 'duration_minutes': duration}
            vehicles = Vehicle.query.filter_by(is_transfer_vehicle=True, status='available').all()
            for vehicle in vehicles:
                if vehicle.passenger_seats and vehicle.passenger_seats < passengers:
                    continue
                quotes.append((vehicle, quote_transfer(vehicle.vehicle_class, distance_km, transfer_type)))
            quotes.sort(key=lambda item: item[1]['total_price'])
        except (RoutingError, PricingError) as e:
            flash(e.message, 'danger')

    return render_template('transfers/search.html', quotes=quotes, route=route,
                           search_params=request.args, transfer_type=transfer_type)


@app.route('/transfers/book/<int:vehicle_id>', methods=['GET', 'POST'])
def book_transfer(vehicle_id):
    """Create a transfer request"""
    vehicle = db.get_or_404(Vehicle, vehicle_id)
    if not vehicle.is_transfer_vehicle:
        abort(404)
    errors = {}

    if request.method == 'POST':
        form = request.form
        transfer_type = form.get('transfer_type', 'one_way')
        errors = validate_customer_info(form.get('customer_name'), form.get('customer_email'),
                                        form.get('customer_phone'), format_flight_number(form.get('flight_number')))
        pickup_date = parse_date(form.get('pickup_date'))
        return_date = parse_date(form.get('return_date'))
        passengers = form.get('passengers', 1, type=int)
        if not form.get('pickup_address'):
            errors['pickup_address'] = 'Pick-up address is required'
        if not form.get('dropoff_address'):
            errors['dropoff_address'] = 'Drop-off address is required'
        if not pickup_date or pickup_date < date.today():
            errors['pickup_date'] = 'A pick-up date from today on is required'
        if not TIME_REGEX.match(form.get('pickup_time', '')):
            errors['pickup_time'] = 'Pick-up time must be HH:MM'
        if transfer_type == 'round_trip':
            if not return_date or (pickup_date and return_date < pickup_date):
                errors['return_date'] = 'Return date must be on or after the pick-up date'
            if not TIME_REGEX.match(form.get('return_time', '')):
                errors['return_time'] = 'Return time must be HH:MM'
        if passengers < 1 or (vehicle.passenger_seats and passengers > vehicle.passenger_seats):
            errors['passengers'] = f'This vehicle takes up to {vehicle.passenger_seats} passengers'
        if form.get('payment_method') not in PAYMENT_METHODS:
            errors['payment_method'] = 'Payment method is required'
        if not is_checked(form, 'terms_accepted'):
            errors['terms_accepted'] = 'You must accept the terms and conditions'

        if not errors:
            try:
                distance_km, duration = resolve_route(form)
                quote = quote_transfer(vehicle.vehicle_class, distance_km, transfer_type)
                transfer = Transfer(
                    transfer_number=next_number(Transfer.transfer_number),
                    user_id=current_user.id if current_user.is_authenticated else None,
                    vehicle_id=vehicle.id,
                    transfer_type=transfer_type,
                    pickup_address=form['pickup_address'],
                    pickup_lng=form.get('pickup_lng', type=float),
                    pickup_lat=form.get('pickup_lat', type=float),
                    dropoff_address=form['dropoff_address'],
                    dropoff_lng=form.get('dropoff_lng', type=float),
                    dropoff_lat=form.get('dropoff_lat', type=float),
                    pickup_date=pickup_date,
                    pickup_time=form['pickup_time'],
                    return_date=return_date if transfer_type == 'round_trip' else None,
                    return_time=form.get('return_time') if transfer_type == 'round_trip' else None,
                    passengers=passengers,
                    luggage_count=form.get('luggage_count', type=int),
                    distance_km=distance_km,
                    estimated_duration_minutes=duration,
                    base_fare=quote['base_fare'],
                    distance_price=quote['distance_charge'],
                    price_per_km=quote['tier_price_per_km'],
                    total_price=quote['total_price'],
                    customer_name=form['customer_name'].strip(),
                    customer_email=form['customer_email'].strip(),
                    customer_phone=form['customer_phone'].strip(),
                    customer_message=form.get('customer_message') or None,
                    flight_number=format_flight_number(form.get('flight_number')) or None,
                    payment_method=form['payment_method'],
                )
                db.session.add(transfer)
                db.session.commit()
            except (RoutingError, PricingError) as e:
                flash(e.message, 'danger')
            except SQLAlchemyError as e:
                db.session.rollback()
                app.logger.error(f"Transfer booking error: {str(e)}")
                flash('An error occurred while saving your transfer. Please try again.', 'danger')
            else:
                app.logger.info(f"Transfer #{transfer.transfer_number} created for vehicle {vehicle.id}")
                token = generate_confirmation_token('transfer', transfer.id)
                send_transfer_emails(transfer, url_for('transfer_confirmation', token=token, _external=True))
                flash('Transfer request submitted!', 'success')
                return redirect(url_for('transfer_confirmation', token=token))
        else:
            flash('Please correct the highlighted fields.', 'danger')
        return render_template('transfers/book.html', vehicle=vehicle, errors=errors, form=form), 400

    return render_template('transfers/book.html', vehicle=vehicle, errors=errors, form=request.args)


@app.route('/transfers/confirmation/<token>')
def transfer_confirmation(token):
    transfer_id = verify_confirmation_token(token, 'transfer')
    if transfer_id is None:
        flash('Invalid or expired confirmation link', 'danger')
        return redirect(url_for('index'))
    transfer = db.get_or_404(Transfer, transfer_id)
    return render_template('transfers/confirmation.html', transfer=transfer)


@app.route('/transfers/cancel/<int:transfer_id>', methods=['POST'])
@login_required
def cancel_transfer(transfer_id):
    """Cancel a transfer"""
    transfer = db.get_or_404(Transfer, transfer_id)
    if transfer.user_id != current_user.id and not current_user.is_admin:
        flash('You can only cancel your own transfers.', 'danger')
        return redirect(url_for('user_dashboard'))
    if transfer.status == 'completed':
        flash('Cannot cancel a completed transfer.', 'danger')
    elif transfer.status == 'cancelled':
        flash('Transfer is already cancelled.', 'warning')
    else:
        transfer.status = 'cancelled'
        db.session.commit()
        flash('Transfer cancelled successfully.', 'success')
    return redirect(url_for('user_dashboard'))


# User routes
@app.route('/user/dashboard')
@login_required
def user_dashboard():
    """User dashboard page"""
    reservations = Reservation.query.filter_by(user_id=current_user.id).order_by(
        Reservation.created_at.desc()).all()
    transfers = Transfer.query.filter_by(user_id=current_user.id).order_by(
        Transfer.pickup_date.desc()).all()
    total_spent = db.session.query(
        func.sum(Reservation.total_price)
    ).filter(
        Reservation.user_id == current_user.id,
        Reservation.status.in_(('confirmed', 'completed'))
    ).scalar() or 0

    return render_template(
        'user/dashboard.html',
        reservations=reservations,
        transfers=transfers,
        total_spent=total_spent
    )


@app.route('/user/reservations/cancel/<int:reservation_id>', methods=['POST'])
@login_required
def cancel_reservation(reservation_id):
    """Cancel a reservation"""
    reservation = db.get_or_404(Reservation, reservation_id)

    if reservation.user_id != current_user.id:
        flash('You can only cancel your own reservations.', 'danger')
        return redirect(url_for('user_dashboard'))

    if reservation.status not in BLOCKING_STATUSES:
        flash(f'Reservation is already {reservation.status} and cannot be cancelled.', 'danger')
        return redirect(url_for('user_dashboard'))

    if reservation.start_date < date.today():
        flash('You can only cancel future reservations.', 'danger')
        return redirect(url_for('user_dashboard'))

    reservation.status = 'cancelled'
    db.session.commit()

    flash('Reservation cancelled!', 'success')
    return redirect(url_for('user_dashboard'))


# Admin routes
@app.route('/admin/dashboard')
@admin_required
def admin_dashboard():
    """Admin dashboard with statistics"""
    reservations = Reservation.query.all()
    recent_reservations = Reservation.query.order_by(Reservation.created_at.desc()).limit(5).all()
    total_revenue = db.session.query(func.sum(Reservation.total_price)).filter(
        Reservation.status.in_(('confirmed', 'completed'))
    ).scalar() or 0
    transfer_revenue = db.session.query(func.sum(Transfer.total_price)).filter(
        Transfer.status.in_(('confirmed', 'completed'))
    ).scalar() or 0

    reservations_per_month = [0] * 12
    status_counts = defaultdict(int)
    for reservation in reservations:
        reservations_per_month[reservation.start_date.month - 1] += 1
        status_counts[reservation.status] += 1

    return render_template(
        'admin/dashboard.html',
        total_vehicles=Vehicle.query.count(),
        total_users=User.query.count(),
        total_reservations=len(reservations),
        total_transfers=Transfer.query.count(),
        pending_transfers=Transfer.query.filter_by(status='pending').count(),
        total_revenue=total_revenue,
        transfer_revenue=transfer_revenue,
        recent_reservations=recent_reservations,
        reservations_per_month=reservations_per_month,
        status_counts=dict(status_counts),
        current_season=get_current_season()
    )


def save_vehicle_image(vehicle):
    file = request.files.get('image')
    if not file or file.filename == '':
        return True
    if not allowed_file(file.filename):
        flash('Allowed file types are ' + ', '.join(sorted(app.config['ALLOWED_EXTENSIONS'])), 'danger')
        return False
    filename = secure_filename(file.filename)
    os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)
    file.save(os.path.join(app.config['UPLOAD_FOLDER'], filename))
    vehicle.image_url = url_for('static', filename=f'images/{filename}')
    return True


def fill_vehicle(vehicle, form):
    """Copy the admin vehicle form onto a vehicle"""
    vehicle.make = form['make'].strip()
    vehicle.model = form['model'].strip()
    vehicle.year = form.get('year', type=int)
    vehicle.type = form.get('type') or None
    vehicle.seats = form.get('seats', type=int)
    vehicle.transmission = form.get('transmission') or None
    vehicle.fuel_type = form.get('fuel_type') or None
    vehicle.engine_capacity = form.get('engine_capacity', type=float)
    vehicle.engine_type = form.get('engine_type') or None
    vehicle.location = form.get('location') or None
    vehicle.features = [f.strip() for f in form.get('features', '').split(',') if f.strip()]
    vehicle.status = form.get('status') if form.get('status') in VEHICLE_STATUSES else 'available'
    vehicle.warranty = form.get('warranty', type=float)
    vehicle.class_id = form.get('class_id', type=int)
    vehicle.is_transfer_vehicle = is_checked(form, 'is_transfer_vehicle')
    vehicle.transfer_seats = form.get('transfer_seats', type=int)
    vehicle.description = form.get('description') or None
    vehicle.pricing_tiers = [PricingTier(**tier) for tier in parse_pricing_tiers(form)]


@app.route('/admin/vehicles')
@admin_required
def admin_vehicles():
    """Admin vehicle management page"""
    page = request.args.get('page', 1, type=int)
    vehicles = Vehicle.query.order_by(Vehicle.created_at.desc()).paginate(page=page, per_page=10, error_out=False)
    return render_template('admin/vehicles.html', vehicles=vehicles.items, pagination=vehicles)


@app.route('/admin/vehicles/add', methods=['GET', 'POST'])
@admin_required
def add_vehicle():
    """Add a new vehicle"""
    classes = VehicleClass.query.order_by(VehicleClass.sort_index).all()
    if request.method == 'POST':
        vehicle = Vehicle()
        try:
            fill_vehicle(vehicle, request.form)
        except PricingError as e:
            flash(e.message, 'danger')
            return render_template('admin/vehicle_form.html', vehicle=None, classes=classes, form=request.form), 400
        if not save_vehicle_image(vehicle):
            return redirect(request.url)

        db.session.add(vehicle)
        db.session.commit()
        flash('Vehicle added successfully!', 'success')
        return redirect(url_for('admin_vehicles'))

    return render_template('admin/vehicle_form.html', vehicle=None, classes=classes, form={})


@app.route('/admin/vehicles/edit/<int:vehicle_id>', methods=['GET', 'POST'])
@admin_required
def edit_vehicle(vehicle_id):
    """Edit vehicle details"""
    vehicle = db.get_or_404(Vehicle, vehicle_id)
    classes = VehicleClass.query.order_by(VehicleClass.sort_index).all()

    if request.method == 'POST':
        try:
            fill_vehicle(vehicle, request.form)
        except PricingError as e:
            db.session.rollback()
            flash(e.message, 'danger')
            return render_template('admin/vehicle_form.html', vehicle=vehicle, classes=classes, form=request.form), 400
        if not save_vehicle_image(vehicle):
            db.session.rollback()
            return redirect(request.url)

        db.session.commit()
        flash('Vehicle updated successfully!', 'success')
        return redirect(url_for('admin_vehicles'))

    return render_template('admin/vehicle_form.html', vehicle=vehicle, classes=classes, form={})


@app.route('/admin/vehicles/status/<int:vehicle_id>', methods=['POST'])
@admin_required
def update_vehicle_status(vehicle_id):
    vehicle = db.get_or_404(Vehicle, vehicle_id)
    status = request.form.get('status')
    if status not in VEHICLE_STATUSES:
        flash('Unknown vehicle status', 'danger')
    else:
        vehicle.status = status
        db.session.commit()
        flash('Vehicle status updated', 'success')
    return redirect(url_for('admin_vehicles'))


@app.route('/admin/vehicles/delete/<int:vehicle_id>', methods=['POST'])
@admin_required
def delete_vehicle(vehicle_id):
    """Delete a vehicle without bookings"""
    vehicle = db.get_or_404(Vehicle, vehicle_id)
    if vehicle.reservations or vehicle.transfers:
        flash('Cannot delete vehicle. It has existing bookings.', 'warning')
        return redirect(url_for('admin_vehicles'))

    db.session.delete(vehicle)
    db.session.commit()
    flash('Vehicle deleted!', 'success')
    return redirect(url_for('admin_vehicles'))


def fill_vehicle_class(vehicle_class, form):
    vehicle_class.name = form['name'].strip().lower()
    vehicle_class.display_name = form.get('display_name') or None
    vehicle_class.description = form.get('description') or None
    vehicle_class.is_active = is_checked(form, 'is_active')
    vehicle_class.additional_50km_price = form.get('additional_50km_price', type=float)
    vehicle_class.transfer_base_fare = form.get('transfer_base_fare', type=float)
    vehicle_class.transfer_multiplier = form.get('transfer_multiplier', type=float)
    if vehicle_class.transfer_multiplier is not None and vehicle_class.transfer_multiplier <= 0:
        raise PricingError('Transfer multiplier must be positive')
    if vehicle_class.transfer_base_fare is not None and vehicle_class.transfer_base_fare < 0:
        raise PricingError('Transfer base fare must not be negative')


@app.route('/admin/classes', methods=['GET', 'POST'])
@admin_required
def admin_classes():
    """List and create vehicle classes"""
    if request.method == 'POST':
        name = request.form['name'].strip().lower()
        if VehicleClass.query.filter_by(name=name).first():
            flash(f'A class named {name} already exists', 'danger')
            return redirect(url_for('admin_classes'))
        vehicle_class = VehicleClass(sort_index=next_sort_index(VehicleClass.sort_index))
        try:
            fill_vehicle_class(vehicle_class, request.form)
        except PricingError as e:
            flash(e.message, 'danger')
            return redirect(url_for('admin_classes'))
        db.session.add(vehicle_class)
        db.session.commit()
        flash('Vehicle class created', 'success')
        return redirect(url_for('admin_classes'))

    classes = VehicleClass.query.order_by(VehicleClass.sort_index).all()
    return render_template('admin/classes.html', classes=classes)


@app.route('/admin/classes/edit/<int:class_id>', methods=['POST'])
@admin_required
def edit_class(class_id):
    vehicle_class = db.get_or_404(VehicleClass, class_id)
    try:
        fill_vehicle_class(vehicle_class, request.form)
        db.session.commit()
        flash('Vehicle class updated', 'success')
    except PricingError as e:
        db.session.rollback()
        flash(e.message, 'danger')
    except SQLAlchemyError as e:
        db.session.rollback()
        flash('Failed to update vehicle class', 'danger')
        app.logger.error(f"Error updating class {class_id}: {str(e)}")
    return redirect(url_for('admin_classes'))


@app.route('/admin/classes/move/<int:class_id>/<direction>', methods=['POST'])
@admin_required
def move_class(class_id, direction):
    """Swap a class with its neighbour in the display order"""
    classes = VehicleClass.query.order_by(VehicleClass.sort_index).all()
    index = next((i for i, c in enumerate(classes) if c.id == class_id), None)
    if index is None:
        abort(404)
    other = index - 1 if direction == 'up' else index + 1
    if 0 <= other < len(classes):
        classes[index], classes[other] = classes[other], classes[index]
        for position, vehicle_class in enumerate(classes):
            vehicle_class.sort_index = position
        db.session.commit()
    return redirect(url_for('admin_classes'))


@app.route('/admin/classes/delete/<int:class_id>', methods=['POST'])
@admin_required
def delete_class(class_id):
    vehicle_class = db.get_or_404(VehicleClass, class_id)
    if vehicle_class.vehicles:
        flash('Cannot delete a class that still has vehicles.', 'warning')
        return redirect(url_for('admin_classes'))
    db.session.delete(vehicle_class)
    db.session.commit()
    flash('Vehicle class deleted', 'success')
    return redirect(url_for('admin_classes'))


# Seasons
@app.route('/admin/seasons', methods=['GET', 'POST'])
@admin_required
def admin_seasons():
    """List and create seasons"""
    if request.method == 'POST':
        try:
            multiplier = float(request.form['multiplier'])
            if multiplier <= 0:
                raise PricingError('Multiplier must be positive')
            season = Season(
                name=request.form['name'].strip(),
                description=request.form.get('description') or None,
                multiplier=multiplier,
                is_active=is_checked(request.form, 'is_active'),
                periods=parse_season_periods(request.form),
            )
        except ValueError as e:
            flash(getattr(e, 'message', 'Multiplier must be a number'), 'danger')
            return redirect(url_for('admin_seasons'))
        db.session.add(season)
        db.session.commit()
        flash(f'Season {season.name} created', 'success')
        return redirect(url_for('admin_seasons'))

    seasons = Season.query.order_by(Season.created_at.desc()).all()
    return render_template('admin/seasons.html', seasons=seasons, current_season=get_current_season())


@app.route('/admin/seasons/edit/<int:season_id>', methods=['POST'])
@admin_required
def edit_season(season_id):
    season = db.get_or_404(Season, season_id)
    try:
        multiplier = float(request.form['multiplier'])
        if multiplier <= 0:
            raise PricingError('Multiplier must be positive')
        periods = parse_season_periods(request.form)
    except ValueError as e:
        flash(getattr(e, 'message', 'Multiplier must be a number'), 'danger')
        return redirect(url_for('admin_seasons'))

    is_active = is_checked(request.form, 'is_active')
    current = get_current_season()
    if not is_active and current is not None and current.id == season.id:
        flash('Cannot deactivate the current season. Please set a different season first.', 'danger')
        return redirect(url_for('admin_seasons'))

    season.name = request.form['name'].strip()
    season.description = request.form.get('description') or None
    season.multiplier = multiplier
    season.is_active = is_active
    season.periods = periods
    db.session.commit()
    flash('Season updated', 'success')
    return redirect(url_for('admin_seasons'))


@app.route('/admin/seasons/delete/<int:season_id>', methods=['POST'])
@admin_required
def delete_season(season_id):
    season = db.get_or_404(Season, season_id)
    current = get_current_season()
    if current is not None and current.id == season.id:
        flash('Cannot delete the currently active season. Please set a different season first.', 'danger')
        return redirect(url_for('admin_seasons'))
    db.session.delete(season)
    db.session.commit()
    flash('Season deleted', 'success')
    return redirect(url_for('admin_seasons'))


@app.route('/admin/seasons/current', methods=['POST'])
@admin_required
def set_current_season():
    """Set the fallback season, or clear it to revert to base pricing"""
    season_id = request.form.get('season_id', type=int)
    CurrentSeason.query.delete()
    if season_id:
        season = db.get_or_404(Season, season_id)
        if not season.is_active:
            db.session.rollback()
            flash('Cannot set inactive season as current', 'danger')
            return redirect(url_for('admin_seasons'))
        db.session.add(CurrentSeason(season_id=season.id, set_by=current_user.email))
        flash(f'{season.name} is now the current season', 'success')
    else:
        flash('Current season cleared, base pricing applies', 'success')
    db.session.commit()
    return redirect(url_for('admin_seasons'))


# Transfer pricing
@app.route('/admin/transfer-pricing', methods=['GET', 'POST'])
@admin_required
def admin_transfer_pricing():
    """List and create transfer pricing tiers"""
    if request.method == 'POST':
        min_km = request.form.get('min_extra_km', type=float)
        max_km = request.form.get('max_extra_km', type=float)
        price = request.form.get('price_per_km', type=float)
        try:
            pricing.validate_transfer_tier(transfer_tiers(active_only=False), min_km, max_km, price)
        except PricingError as e:
            flash(e.message, 'danger')
            return redirect(url_for('admin_transfer_pricing'))
        db.session.add(TransferPricingTier(min_extra_km=min_km, max_extra_km=max_km, price_per_km=price,
                                           sort_index=next_sort_index(TransferPricingTier.sort_index),
                                           is_active=is_checked(request.form, 'is_active')))
        db.session.commit()
        flash('Pricing tier created', 'success')
        return redirect(url_for('admin_transfer_pricing'))

    classes = VehicleClass.query.order_by(VehicleClass.sort_index).all()
    return render_template('admin/transfer_pricing.html', tiers=transfer_tiers(active_only=False),
                           classes=classes, base_km_included=pricing.BASE_KM_INCLUDED)


@app.route('/admin/transfer-pricing/edit/<int:tier_id>', methods=['POST'])
@admin_required
def edit_transfer_tier(tier_id):
    tier = db.get_or_404(TransferPricingTier, tier_id)
    min_km = request.form.get('min_extra_km', tier.min_extra_km, type=float)
    max_km = request.form.get('max_extra_km', type=float)
    price = request.form.get('price_per_km', tier.price_per_km, type=float)
    try:
        pricing.validate_transfer_tier(transfer_tiers(active_only=False), min_km, max_km, price, exclude_id=tier.id)
    except PricingError as e:
        flash(e.message, 'danger')
        return redirect(url_for('admin_transfer_pricing'))
    tier.min_extra_km = min_km
    tier.max_extra_km = max_km
    tier.price_per_km = price
    tier.is_active = is_checked(request.form, 'is_active')
    db.session.commit()
    flash('Pricing tier updated', 'success')
    return redirect(url_for('admin_transfer_pricing'))


@app.route('/admin/transfer-pricing/delete/<int:tier_id>', methods=['POST'])
@admin_required
def delete_transfer_tier(tier_id):
    tier = db.get_or_404(TransferPricingTier, tier_id)
    db.session.delete(tier)
    db.session.commit()
    flash('Pricing tier deleted', 'success')
    return redirect(url_for('admin_transfer_pricing'))


@app.route('/admin/transfer-pricing/seed', methods=['POST'])
@admin_required
def seed_transfer_pricing():
    try:
        seed_default_transfer_tiers()
        flash('Default pricing tiers created', 'success')
    except PricingError as e:
        flash(e.message, 'danger')
    return redirect(url_for('admin_transfer_pricing'))


# Admin reservations
@app.route('/admin/reservations')
@admin_required
def admin_reservations():
    """Admin reservation management page with status filtering"""
    page = request.args.get('page', 1, type=int)
    status_filter = request.args.get('status', 'all')
    query = Reservation.query
    if status_filter != 'all':
        query = query.filter_by(status=status_filter)
    reservations_pagination = query.order_by(Reservation.created_at.desc()).paginate(
        page=page,
        per_page=10,
        error_out=False
    )
    return render_template(
        'admin/reservations.html',
        reservations=reservations_pagination.items,
        pagination=reservations_pagination,
        status_filter=status_filter
    )


@app.route('/admin/reservations/new', methods=['GET', 'POST'])
@admin_required
def admin_create_reservation():
    """Book on behalf of a customer, e.g. after a phone call"""
    vehicles = Vehicle.query.order_by(Vehicle.make, Vehicle.model).all()
    errors = {}
    if request.method == 'POST':
        vehicle_id = request.form.get('vehicle_id', type=int)
        if vehicle_id is None:
            abort(400)
        vehicle = db.get_or_404(Vehicle, vehicle_id)
        values = request.form.copy()
        values['terms_accepted'] = 'on'
        try:
            reservation = build_reservation(vehicle, values, check_past=False)
            reservation.additional_charges = parse_additional_charges(request.form)
            reservation.total_price = pricing.round_money(
                reservation.total_price + sum(c.amount for c in reservation.additional_charges))
            if request.form.get('status') in RESERVATION_STATUSES:
                reservation.status = request.form['status']
            db.session.add(reservation)
            db.session.commit()
        except ValidationError as e:
            errors = e.errors
            flash('Please correct the highlighted fields.', 'danger')
        except (PricingError, VehicleUnavailableError) as e:
            flash(e.message, 'danger')
        else:
            app.logger.info(f"Reservation #{reservation.reservation_number} created by {current_user.email}")
            flash(f'Reservation #{reservation.reservation_number} created', 'success')
            return redirect(url_for('admin_reservations'))
        return render_template('admin/reservation_form.html', reservation=None, vehicles=vehicles,
                               errors=errors, form=request.form), 400

    return render_template('admin/reservation_form.html', reservation=None, vehicles=vehicles, errors=errors, form={})


@app.route('/admin/reservations/edit/<int:reservation_id>', methods=['GET', 'POST'])
@admin_required
def edit_reservation(reservation_id):
    """Edit reservation details.

    With "recalculate" ticked the price is rebuilt from the vehicle's tiers
    using the multiplier stored at booking time; otherwise the entered total
    is kept.
    """
    reservation = db.get_or_404(Reservation, reservation_id)
    vehicles = Vehicle.query.order_by(Vehicle.make, Vehicle.model).all()
    errors = {}

    if request.method == 'POST':
        form = request.form
        start_date, end_date = parse_date(form.get('start_date')), parse_date(form.get('end_date'))
        vehicle = db.get_or_404(Vehicle, form.get('vehicle_id', reservation.vehicle_id, type=int))
        if not start_date or not end_date or end_date < start_date:
            errors['end_date'] = 'Return date must be after the pick-up date'
        for field in ('pickup_time', 'restitution_time'):
            if not TIME_REGEX.match(form.get(field, '')):
                errors[field] = 'Time must be HH:MM'
        errors.update(validate_customer_info(form.get('customer_name'), form.get('customer_email'),
                                             form.get('customer_phone'), format_flight_number(form.get('flight_number'))))
        if form.get('status') not in RESERVATION_STATUSES:
            errors['status'] = 'Unknown status'
        if not errors and form['status'] in BLOCKING_STATUSES and not is_vehicle_available(
                vehicle, start_date, end_date, exclude_reservation_id=reservation.id):
            errors['vehicle_id'] = 'This vehicle is not available for the selected dates.'

        if not errors:
            try:
                charges = parse_additional_charges(form)
                options = rental_options(form)
                breakdown = quote_rental(vehicle, start_date, end_date, options,
                                         multiplier=reservation.seasonal_multiplier,
                                         additional_charges=charges)
                total_price = breakdown['total_price'] if is_checked(form, 'recalculate') \
                    else float(form['total_price'])
            except (ValueError, KeyError) as e:
                flash(getattr(e, 'message', 'Total price must be a number'), 'danger')
            else:
                reservation.vehicle_id = vehicle.id
                reservation.start_date = start_date
                reservation.end_date = end_date
                reservation.pickup_time = form['pickup_time']
                reservation.restitution_time = form['restitution_time']
                reservation.pickup_location = form.get('pickup_location', reservation.pickup_location)
                reservation.restitution_location = form.get('restitution_location', reservation.restitution_location)
                if form.get('payment_method') in PAYMENT_METHODS:
                    reservation.payment_method = form['payment_method']
                reservation.status = form['status']
                reservation.customer_name = form['customer_name'].strip()
                reservation.customer_email = form['customer_email'].strip()
                reservation.customer_phone = form['customer_phone'].strip()
                reservation.customer_message = form.get('customer_message') or None
                reservation.flight_number = format_flight_number(form.get('flight_number')) or None
                reservation.is_scdw_selected = options['scdw_selected']
                reservation.snow_chains = options['snow_chains']
                reservation.child_seats_1to4 = options['child_seats_1to4']
                reservation.child_seats_5to12 = options['child_seats_5to12']
                reservation.extra_km_packages = options['extra_km_packages']
                reservation.additional_charges = charges
                apply_rental_breakdown(reservation, breakdown)
                reservation.total_price = total_price
                db.session.commit()
                flash('Reservation updated!', 'success')
                return redirect(url_for('admin_reservations'))
        else:
            flash('Please correct the highlighted fields.', 'danger')
        return render_template('admin/reservation_form.html', reservation=reservation, vehicles=vehicles,
                               errors=errors, form=form), 400

    return render_template('admin/reservation_form.html', reservation=reservation, vehicles=vehicles,
                           errors=errors, form={})


@app.route('/admin/reservations/update_status/<int:reservation_id>', methods=['POST'])
@admin_required
def update_reservation_status(reservation_id):
    """Update reservation status"""
    reservation = db.get_or_404(Reservation, reservation_id)
    new_status = request.form['status']
    if new_status not in RESERVATION_STATUSES:
        flash('Unknown reservation status', 'danger')
        return redirect(url_for('admin_reservations'))

    reservation.status = new_status
    db.session.commit()

    flash('Reservation status updated!', 'success')
    return redirect(url_for('admin_reservations'))


@app.route('/admin/reservations/delete/<int:reservation_id>', methods=['POST'])
@admin_required
def delete_reservation(reservation_id):
    reservation = db.get_or_404(Reservation, reservation_id)
    db.session.delete(reservation)
    db.session.commit()
    flash('Reservation deleted permanently', 'success')
    return redirect(url_for('admin_reservations'))


# Admin transfers
@app.route('/admin/transfers')
@admin_required
def admin_transfers():
    page = request.args.get('page', 1, type=int)
    status_filter = request.args.get('status', 'all')
    query = Transfer.query
    if status_filter != 'all':
        query = query.filter_by(status=status_filter)
    transfers_pagination = query.order_by(Transfer.pickup_date.desc()).paginate(
        page=page,
        per_page=10,
        error_out=False
    )
    return render_template(
        'admin/transfers.html',
        transfers=transfers_pagination.items,
        pagination=transfers_pagination,
        status_filter=status_filter
    )


@app.route('/admin/transfers/edit/<int:transfer_id>', methods=['GET', 'POST'])
@admin_required
def edit_transfer(transfer_id):
    """Edit transfer details; "recalculate" re-prices from the current tiers"""
    transfer = db.get_or_404(Transfer, transfer_id)
    vehicles = Vehicle.query.filter_by(is_transfer_vehicle=True).order_by(Vehicle.make, Vehicle.model).all()
    errors = {}

    if request.method == 'POST':
        form = request.form
        vehicle = db.get_or_404(Vehicle, form.get('vehicle_id', transfer.vehicle_id, type=int))
        transfer_type = form.get('transfer_type', transfer.transfer_type)
        pickup_date, return_date = parse_date(form.get('pickup_date')), parse_date(form.get('return_date'))
        passengers = form.get('passengers', transfer.passengers, type=int)

        errors = validate_customer_info(form.get('customer_name'), form.get('customer_email'),
                                        form.get('customer_phone'), format_flight_number(form.get('flight_number')))
        if not vehicle.is_transfer_vehicle:
            errors['vehicle_id'] = 'This vehicle does not do transfers'
        if transfer_type not in pricing.TRANSFER_TYPES:
            errors['transfer_type'] = 'Unknown transfer type'
        if not form.get('pickup_address'):
            errors['pickup_address'] = 'Pick-up address is required'
        if not form.get('dropoff_address'):
            errors['dropoff_address'] = 'Drop-off address is required'
        if not pickup_date:
            errors['pickup_date'] = 'Pick-up date is required'
        if not TIME_REGEX.match(form.get('pickup_time', '')):
            errors['pickup_time'] = 'Pick-up time must be HH:MM'
        if transfer_type == 'round_trip':
            if not return_date or (pickup_date and return_date < pickup_date):
                errors['return_date'] = 'Return date must be on or after the pick-up date'
            if not TIME_REGEX.match(form.get('return_time', '')):
                errors['return_time'] = 'Return time must be HH:MM'
        if passengers < 1 or (vehicle.passenger_seats and passengers > vehicle.passenger_seats):
            errors['passengers'] = f'This vehicle takes up to {vehicle.passenger_seats} passengers'
        if form.get('status') not in TRANSFER_STATUSES:
            errors['status'] = 'Unknown status'

        if not errors:
            try:
                distance_km = form.get('distance_km', transfer.distance_km, type=float)
                quote = quote_transfer(vehicle.vehicle_class, distance_km, transfer_type)
                total_price = quote['total_price'] if is_checked(form, 'recalculate') \
                    else float(form['total_price'])
            except PricingError as e:
                flash(e.message, 'danger')
            except (ValueError, KeyError):
                flash('Total price must be a number', 'danger')
            else:
                if is_checked(form, 'recalculate'):
                    transfer.base_fare = quote['base_fare']
                    transfer.distance_price = quote['distance_charge']
                    transfer.price_per_km = quote['tier_price_per_km']
                transfer.vehicle_id = vehicle.id
                transfer.transfer_type = transfer_type
                transfer.pickup_address = form['pickup_address']
                transfer.dropoff_address = form['dropoff_address']
                transfer.pickup_date = pickup_date
                transfer.pickup_time = form['pickup_time']
                transfer.return_date = return_date if transfer_type == 'round_trip' else None
                transfer.return_time = form.get('return_time') if transfer_type == 'round_trip' else None
                transfer.passengers = passengers
                transfer.luggage_count = form.get('luggage_count', transfer.luggage_count, type=int)
                transfer.distance_km = distance_km
                transfer.estimated_duration_minutes = form.get('estimated_duration_minutes',
                                                               transfer.estimated_duration_minutes, type=int)
                transfer.total_price = total_price
                transfer.customer_name = form['customer_name'].strip()
                transfer.customer_email = form['customer_email'].strip()
                transfer.customer_phone = form['customer_phone'].strip()
                transfer.customer_message = form.get('customer_message') or None
                transfer.flight_number = format_flight_number(form.get('flight_number')) or None
                if form.get('payment_method') in PAYMENT_METHODS:
                    transfer.payment_method = form['payment_method']
                transfer.status = form['status']
                db.session.commit()
                flash('Transfer updated!', 'success')
                return redirect(url_for('admin_transfers'))
        else:
            flash('Please correct the highlighted fields.', 'danger')
        return render_template('admin/transfer_form.html', transfer=transfer, vehicles=vehicles,
                               errors=errors, form=form), 400

    return render_template('admin/transfer_form.html', transfer=transfer, vehicles=vehicles,
                           errors=errors, form={})


@app.route('/admin/transfers/update_status/<int:transfer_id>', methods=['POST'])
@admin_required
def update_transfer_status(transfer_id):
    transfer = db.get_or_404(Transfer, transfer_id)
    new_status = request.form['status']
    if new_status not in TRANSFER_STATUSES:
        flash('Unknown transfer status', 'danger')
        return redirect(url_for('admin_transfers'))
    transfer.status = new_status
    db.session.commit()
    flash('Transfer status updated!', 'success')
    return redirect(url_for('admin_transfers'))


@app.route('/admin/transfers/delete/<int:transfer_id>', methods=['POST'])
@admin_required
def delete_transfer(transfer_id):
    transfer = db.get_or_404(Transfer, transfer_id)
    db.session.delete(transfer)
    db.session.commit()
    flash('Transfer deleted permanently', 'success')
    return redirect(url_for('admin_transfers'))


# API routes
@app.route('/api/check_availability/<int:vehicle_id>')
def check_availability(vehicle_id):
    """API endpoint to check vehicle availability"""
    vehicle = db.get_or_404(Vehicle, vehicle_id)
    start_date = parse_date(request.args.get('start_date'))
    end_date = parse_date(request.args.get('end_date'))

    if not start_date or not end_date:
        return jsonify({'error': 'Invalid date format'}), 400
    if start_date > end_date:
        return jsonify({'error': 'End date must be after start date'}), 400

    available = is_vehicle_available(vehicle, start_date, end_date)
    total_price = 0
    if available:
        try:
            total_price = quote_rental(vehicle, start_date, end_date, rental_options(request.args))['total_price']
        except PricingError as e:
            return jsonify({'error': e.message}), 400

    return jsonify({
        'available': available,
        'total_price': total_price
    })


@app.route('/api/quote/rental/<int:vehicle_id>')
def rental_quote(vehicle_id):
    """Full rental price breakdown"""
    vehicle = db.get_or_404(Vehicle, vehicle_id)
    start_date = parse_date(request.args.get('start_date'))
    end_date = parse_date(request.args.get('end_date'))
    if not start_date or not end_date:
        return jsonify({'error': 'Invalid date format'}), 400
    try:
        breakdown = quote_rental(vehicle, start_date, end_date, rental_options(request.args))
    except PricingError as e:
        return jsonify({'error': e.message}), 400
    return jsonify(breakdown)


@app.route('/api/quote/transfer')
def transfer_quote():
    """Transfer price for a vehicle or a vehicle class"""
    vehicle_id = request.args.get('vehicle_id', type=int)
    class_id = request.args.get('class_id', type=int)
    transfer_type = request.args.get('transfer_type', 'one_way')

    vehicle_class = None
    if vehicle_id:
        vehicle_class = db.get_or_404(Vehicle, vehicle_id).vehicle_class
    elif class_id:
        vehicle_class = db.get_or_404(VehicleClass, class_id)

    try:
        distance_km, duration = resolve_route(request.args)
        quote = quote_transfer(vehicle_class, distance_km, transfer_type)
    except (PricingError, RoutingError) as e:
        return jsonify({'error': e.message}), 400
    quote.update(distance_km=distance_km, estimated_duration_minutes=duration)
    return jsonify(quote)


@app.route('/api/seasons/multiplier')
def season_multiplier():
    start_date = parse_date(request.args.get('start_date'))
    end_date = parse_date(request.args.get('end_date'))
    if not start_date or not end_date:
        return jsonify({'error': 'Invalid date format'}), 400
    return jsonify(resolve_season(start_date, end_date))


# CLI commands
@app.cli.command('init-db')
def init_db_command():
    """Create all tables."""
    db.create_all()
    click.echo('Database initialised.')


@app.cli.command('seed-transfer-tiers')
def seed_transfer_tiers_command():
    """Insert the default transfer pricing tiers."""
    try:
        seed_default_transfer_tiers()
    except PricingError as e:
        raise click.ClickException(e.message)
    click.echo('Default transfer pricing tiers created.')


@app.cli.command('create-admin')
@click.option('--email', required=True)
@click.option('--name', default='Administrator')
@click.password_option()
def create_admin_command(email, name, password):
    """Create an admin account or promote an existing one."""
    email = email.strip().lower()
    user = User.query.filter_by(email=email).first()
    if user is None:
        user = User(name=name, email=email, password=generate_password_hash(password))
        db.session.add(user)
    user.role = 'admin'
    db.session.commit()
    click.echo(f'{email} is now an admin.')


# Main application entry point
if __name__ == '__main__':
    with app.app_context():
        db.create_all()

    app.run(debug=True)
