from datetime import date, timedelta

from werkzeug.datastructures import MultiDict

from app import (
    app as flask_app, db, CurrentSeason, Reservation, Season, SeasonPeriod, Transfer, TransferPricingTier,
    User, Vehicle, VehicleClass,
)


def vehicle_form(**changes):
    data = MultiDict([
        ('make', 'Toyota'), ('model', 'Corolla'), ('year', '2023'), ('type', 'sedan'), ('seats', '5'),
        ('transmission', 'automatic'), ('fuel_type', 'hybrid'), ('features', 'AC, GPS'),
        ('tier_min_days', '1'), ('tier_max_days', '3'), ('tier_price', '60'),
        ('tier_min_days', '4'), ('tier_max_days', '10'), ('tier_price', '52.5'),
        ('tier_min_days', ''), ('tier_max_days', ''), ('tier_price', ''),
    ])
    for key, value in changes.items():
        data.setlist(key, value if isinstance(value, list) else [value])
    return data


def test_requires_admin(client, make_user, login):
    assert client.get('/admin/dashboard').status_code == 302
    make_user()
    login('renter@example.com')
    response = client.get('/admin/dashboard', follow_redirects=True)
    assert b'You do not have permission to access this page.' in response.data


def test_dashboard(admin_client, vehicle, booking_form):
    admin_client.post(f'/reservation/{vehicle.id}', data=booking_form)
    Reservation.query.one().status = 'confirmed'
    db.session.commit()

    response = admin_client.get('/admin/dashboard')
    assert response.status_code == 200
    assert b'Rental revenue: 160 EUR' in response.data
    assert b'confirmed: 1' in response.data


class TestVehicles:
    def test_add_vehicle(self, admin_client):
        response = admin_client.post('/admin/vehicles/add', data=vehicle_form(), follow_redirects=True)
        assert b'Vehicle added successfully!' in response.data
        vehicle = Vehicle.query.one()
        assert vehicle.features == ['AC', 'GPS']
        assert [(t.min_days, t.max_days, t.price_per_day) for t in vehicle.pricing_tiers] == [(1, 3, 60), (4, 10, 52.5)]
        assert vehicle.base_price_per_day == 60

    def test_overlapping_tiers_are_rejected(self, admin_client):
        form = vehicle_form(tier_min_days=['1', '3'], tier_max_days=['3', '10'], tier_price=['60', '50'])
        response = admin_client.post('/admin/vehicles/add', data=form)
        assert response.status_code == 400
        assert b'overlaps' in response.data
        assert Vehicle.query.count() == 0

    def test_tiers_are_required(self, admin_client):
        form = vehicle_form(tier_min_days=[''], tier_max_days=[''], tier_price=[''])
        assert admin_client.post('/admin/vehicles/add', data=form).status_code == 400

    def test_edit_replaces_tiers(self, admin_client, vehicle):
        form = vehicle_form(tier_min_days=['1'], tier_max_days=['30'], tier_price=['42'])
        admin_client.post(f'/admin/vehicles/edit/{vehicle.id}', data=form)
        assert vehicle.model == 'Corolla'
        assert [t.price_per_day for t in vehicle.pricing_tiers] == [42]

    def test_status(self, admin_client, vehicle):
        admin_client.post(f'/admin/vehicles/status/{vehicle.id}', data={'status': 'maintenance'})
        assert vehicle.status == 'maintenance'

    def test_delete_refused_with_bookings(self, admin_client, vehicle, booking_form):
        admin_client.post(f'/reservation/{vehicle.id}', data=booking_form)
        response = admin_client.post(f'/admin/vehicles/delete/{vehicle.id}', follow_redirects=True)
        assert b'It has existing bookings.' in response.data
        assert Vehicle.query.count() == 1

    def test_delete(self, admin_client, vehicle):
        admin_client.post(f'/admin/vehicles/delete/{vehicle.id}')
        assert Vehicle.query.count() == 0


class TestClasses:
    def test_create_and_order(self, admin_client):
        for name in ('economy', 'business', 'van'):
            admin_client.post('/admin/classes', data={'name': name, 'is_active': 'on'})
        van = VehicleClass.query.filter_by(name='van').one()
        admin_client.post(f'/admin/classes/move/{van.id}/up')
        ordered = [c.name for c in VehicleClass.query.order_by(VehicleClass.sort_index)]
        assert ordered == ['economy', 'van', 'business']

    def test_duplicate_name(self, admin_client, business_class):
        response = admin_client.post('/admin/classes', data={'name': 'Business'}, follow_redirects=True)
        assert b'already exists' in response.data
        assert VehicleClass.query.count() == 1

    def test_edit_transfer_settings(self, admin_client, business_class):
        admin_client.post(f'/admin/classes/edit/{business_class.id}', data={
            'name': 'business', 'transfer_base_fare': '35', 'transfer_multiplier': '1.8', 'is_active': 'on'})
        assert business_class.transfer_base_fare == 35
        assert business_class.transfer_multiplier == 1.8

    def test_negative_multiplier(self, admin_client, business_class):
        admin_client.post(f'/admin/classes/edit/{business_class.id}', data={
            'name': 'business', 'transfer_multiplier': '-1'})
        assert business_class.transfer_multiplier == 1.5

    def test_delete_refused_with_vehicles(self, admin_client, transfer_vehicle, business_class):
        admin_client.post(f'/admin/classes/delete/{business_class.id}')
        assert VehicleClass.query.count() == 1


class TestSeasons:
    def season_form(self, **changes):
        data = MultiDict([
            ('name', 'Summer'), ('multiplier', '1.3'), ('is_active', 'on'),
            ('period_start', '2025-07-01'), ('period_end', '2025-08-31'), ('period_description', 'Peak'),
            ('period_start', ''), ('period_end', ''), ('period_description', ''),
        ])
        for key, value in changes.items():
            data.setlist(key, [value])
        return data

    def test_create(self, admin_client):
        admin_client.post('/admin/seasons', data=self.season_form())
        season = Season.query.one()
        assert season.multiplier == 1.3
        assert [(p.start_date, p.end_date) for p in season.periods] == [(date(2025, 7, 1), date(2025, 8, 31))]

    def test_needs_a_period(self, admin_client):
        form = self.season_form(period_start='', period_end='', period_description='')
        response = admin_client.post('/admin/seasons', data=form, follow_redirects=True)
        assert b'at least one period' in response.data
        assert Season.query.count() == 0

    def test_multiplier_must_be_positive(self, admin_client):
        admin_client.post('/admin/seasons', data=self.season_form(multiplier='0'))
        assert Season.query.count() == 0

    def test_current_season_lifecycle(self, admin_client):
        admin_client.post('/admin/seasons', data=self.season_form())
        season = Season.query.one()

        admin_client.post('/admin/seasons/current', data={'season_id': season.id})
        assert CurrentSeason.query.one().season_id == season.id
        assert CurrentSeason.query.one().set_by == 'admin@rngo.ro'

        response = admin_client.post(f'/admin/seasons/delete/{season.id}', follow_redirects=True)
        assert b'Cannot delete the currently active season' in response.data

        form = self.season_form()
        form.setlist('is_active', [])
        response = admin_client.post(f'/admin/seasons/edit/{season.id}', data=form, follow_redirects=True)
        assert b'Cannot deactivate the current season' in response.data
        assert season.is_active

        admin_client.post('/admin/seasons/current', data={'season_id': ''})
        assert CurrentSeason.query.count() == 0
        admin_client.post(f'/admin/seasons/delete/{season.id}')
        assert Season.query.count() == 0

    def test_inactive_season_cannot_be_current(self, admin_client):
        form = self.season_form()
        form.setlist('is_active', [])
        admin_client.post('/admin/seasons', data=form)
        season = Season.query.one()
        response = admin_client.post('/admin/seasons/current', data={'season_id': season.id}, follow_redirects=True)
        assert b'Cannot set inactive season as current' in response.data
        assert CurrentSeason.query.count() == 0


class TestTransferPricing:
    def test_seed_and_list(self, admin_client):
        admin_client.post('/admin/transfer-pricing/seed')
        assert TransferPricingTier.query.count() == 6
        response = admin_client.post('/admin/transfer-pricing/seed', follow_redirects=True)
        assert b'already exist' in response.data
        assert admin_client.get('/admin/transfer-pricing').status_code == 200

    def test_create_open_ended(self, admin_client):
        admin_client.post('/admin/transfer-pricing', data={
            'min_extra_km': '0', 'max_extra_km': '', 'price_per_km': '1.1', 'is_active': 'on'})
        tier = TransferPricingTier.query.one()
        assert tier.max_extra_km is None
        assert tier.is_active

    def test_unticked_checkbox_deactivates(self, admin_client):
        admin_client.post('/admin/transfer-pricing', data={
            'min_extra_km': '0', 'max_extra_km': '25', 'price_per_km': '1.1', 'is_active': ''})
        tier = TransferPricingTier.query.one()
        assert not tier.is_active

        admin_client.post(f'/admin/transfer-pricing/edit/{tier.id}', data={
            'min_extra_km': '0', 'max_extra_km': '25', 'price_per_km': '1.1', 'is_active': 'on'})
        assert tier.is_active

    def test_overlap_is_rejected(self, admin_client):
        admin_client.post('/admin/transfer-pricing/seed')
        response = admin_client.post('/admin/transfer-pricing', data={
            'min_extra_km': '10', 'max_extra_km': '30', 'price_per_km': '1.5'}, follow_redirects=True)
        assert b'Range 10.0-30.0 overlaps with existing tier 0.0-25.0' in response.data
        assert TransferPricingTier.query.count() == 6

    def test_edit_and_delete(self, admin_client):
        admin_client.post('/admin/transfer-pricing/seed')
        first = TransferPricingTier.query.order_by(TransferPricingTier.min_extra_km).first()
        admin_client.post(f'/admin/transfer-pricing/edit/{first.id}', data={
            'min_extra_km': '0', 'max_extra_km': '25', 'price_per_km': '1.75', 'is_active': 'on'})
        assert first.price_per_km == 1.75

        admin_client.post(f'/admin/transfer-pricing/delete/{first.id}')
        assert TransferPricingTier.query.count() == 5


class TestReservations:
    def test_status_update(self, admin_client, vehicle, booking_form):
        admin_client.post(f'/reservation/{vehicle.id}', data=booking_form)
        reservation = Reservation.query.one()
        admin_client.post(f'/admin/reservations/update_status/{reservation.id}', data={'status': 'confirmed'})
        assert reservation.status == 'confirmed'
        admin_client.post(f'/admin/reservations/update_status/{reservation.id}', data={'status': 'lost'})
        assert reservation.status == 'confirmed'

    def test_list_filters_by_status(self, admin_client, vehicle, booking_form):
        admin_client.post(f'/reservation/{vehicle.id}', data=booking_form)
        assert b'Ion Popescu' in admin_client.get('/admin/reservations?status=pending').data
        assert b'Ion Popescu' not in admin_client.get('/admin/reservations?status=completed').data

    def test_create_with_charges(self, admin_client, vehicle, booking_form):
        data = MultiDict(booking_form)
        data['vehicle_id'] = str(vehicle.id)
        data['status'] = 'confirmed'
        data.setlist('charge_description', ['Cleaning', ''])
        data.setlist('charge_amount', ['25', ''])
        data.pop('terms_accepted')
        admin_client.post('/admin/reservations/new', data=data)

        reservation = Reservation.query.one()
        assert reservation.status == 'confirmed'
        assert [c.description for c in reservation.additional_charges] == ['Cleaning']
        assert reservation.total_price == 160 + 25

    def test_edit_recalculates_with_booked_multiplier(self, admin_client, vehicle, booking_form, dates):
        start, end = dates
        db.session.add(Season(name='Peak', multiplier=1.2, is_active=True,
                              periods=[SeasonPeriod(start_date=start, end_date=end)]))
        db.session.commit()
        admin_client.post(f'/reservation/{vehicle.id}', data=booking_form)
        reservation = Reservation.query.one()
        assert reservation.total_price == 190

        # the season ends; the booking keeps its rate
        Season.query.delete()
        db.session.commit()

        data = MultiDict(booking_form)
        data['vehicle_id'] = str(vehicle.id)
        data['status'] = 'confirmed'
        data['recalculate'] = 'on'
        data['total_price'] = '0'
        data['end_date'] = (start + timedelta(days=4)).isoformat()
        data.setlist('charge_description', ['Late fee'])
        data.setlist('charge_amount', ['15'])
        response = admin_client.post(f'/admin/reservations/edit/{reservation.id}', data=data)
        assert response.status_code == 302
        assert reservation.number_of_days == 4
        assert reservation.price_per_day_used == 54
        assert reservation.total_price == 4 * 54 + 10 + 15

    def test_edit_keeps_manual_total(self, admin_client, vehicle, booking_form):
        admin_client.post(f'/reservation/{vehicle.id}', data=booking_form)
        reservation = Reservation.query.one()
        data = MultiDict(booking_form)
        data['vehicle_id'] = str(vehicle.id)
        data['status'] = 'pending'
        data['total_price'] = '140'
        admin_client.post(f'/admin/reservations/edit/{reservation.id}', data=data)
        assert reservation.total_price == 140

    def test_edit_refuses_double_booking(self, admin_client, make_vehicle, booking_form):
        logan, duster = make_vehicle(), make_vehicle(model='Duster')
        admin_client.post(f'/reservation/{logan.id}', data=booking_form)
        admin_client.post(f'/reservation/{duster.id}', data=booking_form)
        moved = Reservation.query.filter_by(vehicle_id=duster.id).one()

        data = MultiDict(booking_form)
        data['vehicle_id'] = str(logan.id)
        data['status'] = 'pending'
        data['total_price'] = '160'
        response = admin_client.post(f'/admin/reservations/edit/{moved.id}', data=data)
        assert response.status_code == 400
        assert moved.vehicle_id == duster.id

    def test_delete(self, admin_client, vehicle, booking_form):
        admin_client.post(f'/reservation/{vehicle.id}', data=booking_form)
        reservation = Reservation.query.one()
        admin_client.post(f'/admin/reservations/delete/{reservation.id}')
        assert Reservation.query.count() == 0


def add_transfer(vehicle, **changes):
    fields = dict(transfer_number=1, vehicle_id=vehicle.id, pickup_address='Airport', dropoff_address='Centre',
                  pickup_date=date.today(), pickup_time='08:00', distance_km=12, base_fare=30, distance_price=0,
                  price_per_km=0, total_price=30, customer_name='Maria Ionescu', customer_email='maria@example.com',
                  customer_phone='+40744111222', payment_method='cash_on_delivery')
    fields.update(changes)
    transfer = Transfer(**fields)
    db.session.add(transfer)
    db.session.commit()
    return transfer


def transfer_edit_form(transfer, **changes):
    data = {
        'vehicle_id': str(transfer.vehicle_id), 'transfer_type': 'one_way',
        'pickup_address': 'Aeroport Cluj-Napoca', 'dropoff_address': 'Piata Unirii',
        'pickup_date': (date.today() + timedelta(days=3)).isoformat(), 'pickup_time': '09:15',
        'passengers': '2', 'luggage_count': '1', 'distance_km': '40', 'estimated_duration_minutes': '35',
        'customer_name': 'Maria Ionescu', 'customer_email': 'maria@example.com',
        'customer_phone': '+40 744 111 222', 'flight_number': 'w6 3101',
        'payment_method': 'card_on_delivery', 'status': 'confirmed', 'total_price': '99',
    }
    data.update(changes)
    return data


class TestTransfers:
    def test_status_and_delete(self, admin_client, transfer_vehicle):
        transfer = add_transfer(transfer_vehicle)
        assert b'Maria Ionescu' in admin_client.get('/admin/transfers').data
        admin_client.post(f'/admin/transfers/update_status/{transfer.id}', data={'status': 'completed'})
        assert transfer.status == 'completed'
        admin_client.post(f'/admin/transfers/delete/{transfer.id}')
        assert Transfer.query.count() == 0

    def test_edit_keeps_entered_total(self, admin_client, transfer_vehicle):
        transfer = add_transfer(transfer_vehicle)
        assert admin_client.get(f'/admin/transfers/edit/{transfer.id}').status_code == 200

        response = admin_client.post(f'/admin/transfers/edit/{transfer.id}', data=transfer_edit_form(transfer))
        assert response.status_code == 302
        assert transfer.total_price == 99
        assert transfer.base_fare == 30
        assert transfer.distance_km == 40
        assert transfer.pickup_time == '09:15'
        assert transfer.flight_number == 'W6 3101'
        assert transfer.payment_method == 'card_on_delivery'
        assert transfer.status == 'confirmed'

    def test_edit_recalculates(self, admin_client, transfer_vehicle):
        admin_client.post('/admin/transfer-pricing/seed')
        transfer = add_transfer(transfer_vehicle)
        form = transfer_edit_form(transfer, transfer_type='round_trip', recalculate='on',
                                  return_date=(date.today() + timedelta(days=4)).isoformat(), return_time='18:00')
        admin_client.post(f'/admin/transfers/edit/{transfer.id}', data=form)
        assert transfer.transfer_type == 'round_trip'
        assert transfer.return_time == '18:00'
        assert transfer.price_per_km == 1.2
        assert transfer.distance_price == 45
        assert transfer.total_price == 150

    def test_edit_validates(self, admin_client, transfer_vehicle):
        transfer = add_transfer(transfer_vehicle)
        form = transfer_edit_form(transfer, customer_email='not-an-email', passengers='9')
        response = admin_client.post(f'/admin/transfers/edit/{transfer.id}', data=form)
        assert response.status_code == 400
        assert b'up to 3 passengers' in response.data
        assert transfer.total_price == 30

    def test_edit_rejects_infinite_distance(self, admin_client, transfer_vehicle):
        transfer = add_transfer(transfer_vehicle)
        response = admin_client.post(f'/admin/transfers/edit/{transfer.id}',
                                     data=transfer_edit_form(transfer, distance_km='inf'))
        assert response.status_code == 400
        assert transfer.distance_km == 12


def test_cli_commands(app):
    runner = flask_app.test_cli_runner()
    result = runner.invoke(args=['seed-transfer-tiers'])
    assert 'created' in result.output
    assert runner.invoke(args=['seed-transfer-tiers']).exit_code != 0

    result = runner.invoke(args=['create-admin', '--email', 'Boss@rngo.ro', '--password', 'pw12345'])
    assert result.exit_code == 0
    assert User.query.filter_by(email='boss@rngo.ro').one().is_admin
