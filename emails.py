"""Booking notification emails.

Each booking sends two messages: one to the office (reply-to the customer)
and one to the customer. A failed send is logged and never undoes the
booking itself.
"""
from smtplib import SMTPException

from flask import current_app, render_template
from flask_mail import Mail, Message

from validators import PAYMENT_METHODS

mail = Mail()


def payment_method_label(method):
    return PAYMENT_METHODS.get(method, method)


def format_currency(amount, currency='EUR'):
    if amount is None:
        return '-'
    if float(amount).is_integer():
        return f'{int(amount)} {currency}'
    return f'{amount:.2f} {currency}'


def format_duration(minutes):
    """'45 min', '2h', '1h 30min'."""
    minutes = int(minutes or 0)
    if minutes < 60:
        return f'{minutes} min'
    hours, remaining = divmod(minutes, 60)
    if remaining == 0:
        return f'{hours}h'
    return f'{hours}h {remaining}min'


def _send(subject, recipients, template, reply_to=None, **context):
    html = render_template(template, **context)
    message = Message(subject, recipients=recipients, html=html, reply_to=reply_to)
    try:
        mail.send(message)
    except (SMTPException, OSError) as e:
        current_app.logger.error(f"Failed to send '{subject}' to {recipients}: {e}")
        return False
    return True


def send_reservation_emails(reservation):
    """Office notification plus customer confirmation for a new reservation."""
    admin_email = current_app.config['ADMIN_EMAIL']
    number = reservation.reservation_number

    admin_sent = _send(
        f'New reservation request #{number}',
        [admin_email],
        'emails/admin_reservation.html',
        reply_to=reservation.customer_email,
        reservation=reservation,
    )
    customer_sent = _send(
        f'Request submitted #{number}',
        [reservation.customer_email],
        'emails/customer_reservation.html',
        reply_to=admin_email,
        reservation=reservation,
    )
    if admin_sent and customer_sent:
        current_app.logger.info(f'Reservation confirmation emails sent for #{number}')
    return admin_sent and customer_sent


def send_transfer_emails(transfer, confirmation_url=None):
    admin_email = current_app.config['ADMIN_EMAIL']
    number = transfer.transfer_number

    admin_sent = _send(
        f'New transfer request #{number}',
        [admin_email],
        'emails/admin_transfer.html',
        reply_to=transfer.customer_email,
        transfer=transfer,
    )
    customer_sent = _send(
        f'Transfer request submitted #{number}',
        [transfer.customer_email],
        'emails/customer_transfer.html',
        reply_to=admin_email,
        transfer=transfer,
        confirmation_url=confirmation_url,
    )
    if admin_sent and customer_sent:
        current_app.logger.info(f'Transfer confirmation emails sent for #{number}')
    return admin_sent and customer_sent
