from datetime import date, timedelta

from app import db, Reservation, Season, SeasonPeriod
from emails import mail


def book(client, vehicle, form, **changes):
    data = dict(form, **changes)
    return client.post(f'/reservation/{vehicle.id}', data=data)


def test_guest_reservation(client, vehicle, booking_form):
    with mail.record_messages() as outbox:
        response = book(client, vehicle, booking_form, scdw='on')

    assert response.status_code == 302
    assert '/reservation/confirmation/' in response.headers['Location']
    reservation = Reservation.query.one()
    assert reservation.reservation_number == 1
    assert reservation.status == 'pending'
    assert reservation.user_id is None
    assert reservation.number_of_days == 3
    assert reservation.price_per_day_used == 50
    assert reservation.flight_number == 'RO 123'
    # 3 x 50 + 10 delivery + SCDW (2 x 50)
    assert reservation.protection_cost == 100
    assert reservation.deductible_amount == 0
    assert reservation.total_price == 260
    assert [m.subject for m in outbox] == ['New reservation request #1', 'Request submitted #1']

    page = client.get(response.headers['Location'])
    assert page.status_code == 200
    assert b'Reservation request #1' in page.data


def test_reservation_numbers_increase(client, make_vehicle, booking_form):
    first, second = make_vehicle(), make_vehicle(model='Duster')
    book(client, first, booking_form)
    book(client, second, booking_form)
    assert [r.reservation_number for r in Reservation.query.order_by(Reservation.id)] == [1, 2]


def test_deductible_without_scdw(client, make_vehicle, booking_form):
    suv = make_vehicle(model='Duster', type='suv')
    book(client, suv, booking_form)
    reservation = Reservation.query.one()
    assert reservation.deductible_amount == 800
    assert reservation.total_price == 160


def test_overlapping_reservation_is_refused(client, vehicle, booking_form, dates):
    book(client, vehicle, booking_form)
    start, _ = dates
    response = book(client, vehicle, booking_form, start_date=(start + timedelta(days=2)).isoformat(),
                    end_date=(start + timedelta(days=6)).isoformat())
    assert response.status_code == 409
    assert Reservation.query.count() == 1


def test_cancelled_reservation_frees_the_car(client, vehicle, booking_form):
    book(client, vehicle, booking_form)
    Reservation.query.one().status = 'cancelled'
    db.session.commit()
    assert book(client, vehicle, booking_form).status_code == 302


def test_vehicle_in_maintenance_cannot_be_booked(client, make_vehicle, booking_form):
    broken = make_vehicle(status='maintenance')
    assert book(client, broken, booking_form).status_code == 409


def test_invalid_form(client, vehicle, booking_form):
    response = book(client, vehicle, booking_form, customer_phone='0712', terms_accepted='')
    assert response.status_code == 400
    assert b'You must accept the terms and conditions' in response.data
    assert Reservation.query.count() == 0


def test_past_dates_are_refused(client, vehicle, booking_form):
    yesterday = date.today() - timedelta(days=1)
    response = book(client, vehicle, booking_form, start_date=yesterday.isoformat())
    assert response.status_code == 400
    assert b'cannot be in the past' in response.data


def test_seasonal_price_is_stored(client, vehicle, booking_form, dates):
    start, end = dates
    db.session.add(Season(name='Peak', multiplier=1.2, is_active=True,
                          periods=[SeasonPeriod(start_date=start, end_date=end)]))
    db.session.commit()

    book(client, vehicle, booking_form)
    reservation = Reservation.query.one()
    assert reservation.seasonal_multiplier == 1.2
    assert reservation.season_name == 'Peak'
    assert reservation.price_per_day_used == 60
    assert reservation.total_price == 3 * 60 + 10


def test_add_ons(client, vehicle, booking_form):
    book(client, vehicle, booking_form, snow_chains='on', child_seats_5to12='2', extra_km_packages='1',
         restitution_location='Brasov')
    reservation = Reservation.query.one()
    # 150 rental + 10 + 180 location fees + 9 chains + 18 seats + 5 km package
    assert reservation.total_price == 372
    assert reservation.child_seats_5to12 == 2


def test_logged_in_user_can_cancel(client, make_user, login, vehicle, booking_form):
    user = make_user()
    login(user.email)
    book(client, vehicle, booking_form)
    reservation = Reservation.query.one()
    assert reservation.user_id == user.id

    response = client.post(f'/user/reservations/cancel/{reservation.id}', follow_redirects=True)
    assert b'Reservation cancelled!' in response.data
    assert reservation.status == 'cancelled'


def test_user_cannot_cancel_someone_elses(client, make_user, login, vehicle, booking_form):
    book(client, vehicle, booking_form)
    user = make_user()
    login(user.email)
    reservation = Reservation.query.one()
    client.post(f'/user/reservations/cancel/{reservation.id}')
    assert reservation.status == 'pending'


def test_dashboard_lists_reservations(client, make_user, login, vehicle, booking_form):
    user = make_user()
    login(user.email)
    book(client, vehicle, booking_form)
    response = client.get('/user/dashboard')
    assert response.status_code == 200
    assert b'Dacia Logan 2022' in response.data


def test_bad_confirmation_token(client):
    response = client.get('/reservation/confirmation/not-a-token')
    assert response.status_code == 302


def test_check_availability(client, vehicle, booking_form, dates):
    start, end = dates
    url = f'/api/check_availability/{vehicle.id}?start_date={start}&end_date={end}'
    assert client.get(url).get_json() == {'available': True, 'total_price': 150}

    book(client, vehicle, booking_form)
    assert client.get(url).get_json() == {'available': False, 'total_price': 0}
    assert client.get(f'/api/check_availability/{vehicle.id}?start_date={end}&end_date={start}').status_code == 400


def test_rental_quote(client, vehicle, dates):
    start, _ = dates
    end = start + timedelta(days=5)
    response = client.get(f'/api/quote/rental/{vehicle.id}?start_date={start}&end_date={end}'
                          f'&pickup_time=10:00&restitution_time=14:00&pickup_location=Sibiu&scdw=1')
    quote = response.get_json()
    assert quote['days'] == 6
    assert quote['price_per_day'] == 45
    assert quote['delivery_fee'] == 120
    assert quote['scdw_price'] == 106
    assert quote['total_price'] == 6 * 45 + 120 + 106
    assert quote['season_name'] is None


def test_rental_quote_rejects_reversed_dates(client, vehicle, dates):
    start, end = dates
    response = client.get(f'/api/quote/rental/{vehicle.id}?start_date={end}&end_date={start}')
    assert response.status_code == 400
    assert 'error' in response.get_json()


def test_search_hides_booked_cars(client, make_vehicle, booking_form, dates):
    logan = make_vehicle()
    make_vehicle(make='Skoda', model='Octavia')
    book(client, logan, booking_form)
    start, end = dates

    response = client.get(f'/cars?start_date={start}&end_date={end}')
    assert b'Octavia' in response.data
    assert b'Logan' not in response.data

    response = client.get('/cars?sort=price_asc')
    assert b'Logan' in response.data


def test_car_details_with_quote(client, vehicle, dates):
    start, end = dates
    response = client.get(f'/cars/{vehicle.id}?start_date={start}&end_date={end}')
    assert response.status_code == 200
    assert b'150 EUR' in response.data


def test_check_availability_rejects_bad_time(client, vehicle, dates):
    start, end = dates
    response = client.get(f'/api/check_availability/{vehicle.id}?start_date={start}&end_date={end}'
                          f'&pickup_time=noon&restitution_time=10:00')
    assert response.status_code == 400
    assert 'noon' in response.get_json()['error']
