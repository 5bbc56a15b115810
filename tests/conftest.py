import os
from datetime import date, timedelta

import pytest

os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['TESTING'] = 'true'
os.environ['MAIL_SUPPRESS_SEND'] = 'true'
os.environ['SECRET_KEY'] = 'test-secret'
os.environ.pop('MAPBOX_TOKEN', None)

from werkzeug.security import generate_password_hash  # noqa: E402

from app import app as flask_app, db, User, Vehicle, VehicleClass, PricingTier  # noqa: E402

PASSWORD = 'secret123'


@pytest.fixture
def app():
    flask_app.config.update(TESTING=True, MAPBOX_TOKEN=None)
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    def _make_user(email='renter@example.com', role='renter', name='Ana Pop'):
        user = User(name=name, email=email, password=generate_password_hash(PASSWORD), role=role,
                    phone='+40712345678')
        db.session.add(user)
        db.session.commit()
        return user
    return _make_user


@pytest.fixture
def login(client):
    def _login(email):
        return client.post('/login', data={'email': email, 'password': PASSWORD}, follow_redirects=True)
    return _login


@pytest.fixture
def admin_client(client, make_user, login):
    make_user(email='admin@rngo.ro', role='admin', name='Office')
    login('admin@rngo.ro')
    return client


@pytest.fixture
def make_vehicle(app):
    def _make_vehicle(tiers=((1, 3, 50), (4, 7, 45), (8, 30, 40)), **overrides):
        fields = dict(make='Dacia', model='Logan', year=2022, type='sedan', seats=5,
                      transmission='manual', fuel_type='diesel', status='available', features=['AC'])
        fields.update(overrides)
        vehicle = Vehicle(**fields)
        vehicle.pricing_tiers = [PricingTier(min_days=a, max_days=b, price_per_day=p) for a, b, p in tiers]
        db.session.add(vehicle)
        db.session.commit()
        return vehicle
    return _make_vehicle


@pytest.fixture
def vehicle(make_vehicle):
    return make_vehicle()


@pytest.fixture
def business_class(app):
    vehicle_class = VehicleClass(name='business', display_name='Business', transfer_base_fare=30,
                                 transfer_multiplier=1.5, additional_50km_price=8)
    db.session.add(vehicle_class)
    db.session.commit()
    return vehicle_class


@pytest.fixture
def transfer_vehicle(make_vehicle, business_class):
    return make_vehicle(make='Mercedes', model='E-Class', type='sedan', seats=5, transfer_seats=3,
                        is_transfer_vehicle=True, class_id=business_class.id)


@pytest.fixture
def dates():
    """Booking dates safely in the future."""
    start = date.today() + timedelta(days=10)
    return start, start + timedelta(days=3)


@pytest.fixture
def booking_form(dates):
    start, end = dates
    return {
        'start_date': start.isoformat(),
        'end_date': end.isoformat(),
        'pickup_time': '10:00',
        'restitution_time': '10:00',
        'pickup_location': 'Cluj-Napoca',
        'restitution_location': 'Aeroport Cluj-Napoca',
        'customer_name': 'Ion Popescu',
        'customer_email': 'ion@example.com',
        'customer_phone': '+40 712 345 678',
        'flight_number': 'ro123',
        'payment_method': 'cash_on_delivery',
        'terms_accepted': 'on',
    }
