import os
from dotenv import load_dotenv

load_dotenv()


def env_flag(name, default='false'):
    return os.getenv(name, default).lower() in ('1', 'true', 'yes')


class Config:
    SECRET_KEY = os.getenv('SECRET_KEY') or 'c41d0e7b9a2f4e58b3f6a1d2e9c7b054'
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL') or 'sqlite:///rentngo.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    TESTING = env_flag('TESTING')
    UPLOAD_FOLDER = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'static', 'images')
    ALLOWED_EXTENSIONS = {'png', 'jpg', 'jpeg', 'webp'}
    MAX_CONTENT_LENGTH = 16 * 1024 * 1024
    # Flask-Mail Configuration
    MAIL_SERVER = os.getenv('MAIL_SERVER', 'smtp.gmail.com')
    MAIL_PORT = int(os.getenv('MAIL_PORT', '587'))
    MAIL_USE_TLS = True
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD')
    MAIL_DEFAULT_SENDER = os.getenv('MAIL_DEFAULT_SENDER', "Rent'n Go <noreply@rngo.ro>")
    MAIL_SUPPRESS_SEND = env_flag('MAIL_SUPPRESS_SEND', os.getenv('TESTING', 'false'))
    ADMIN_EMAIL = os.getenv('ADMIN_EMAIL', 'office@rngo.ro')
    # Mapbox Directions, used to measure transfer routes
    MAPBOX_TOKEN = os.getenv('MAPBOX_TOKEN')
    MAPBOX_TIMEOUT = 10
    CURRENCY = 'EUR'
    CONFIRMATION_MAX_AGE = 60 * 60 * 24 * 30
