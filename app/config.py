import os
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name, default='false'):
    return os.environ.get(name, default).lower() == 'true'


class Config:
    """Settings shared by every environment; values come from the environment or .env."""

    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-only-secret'
    DEBUG = _env_flag('FLASK_DEBUG')
    VERSION = '1.0.0'

    # Storage
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///rsvp.db'
    if not os.environ.get('DATABASE_URL'):
        print("WARNING: DATABASE_URL not set, using local SQLite file rsvp.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {'pool_pre_ping': True}

    BASE_DIR = os.path.dirname(os.path.abspath(__file__))
    QR_CODE_FOLDER = os.environ.get('QR_CODE_FOLDER') or os.path.join(BASE_DIR, 'static', 'qrcodes')
    LOG_FOLDER = os.environ.get('LOG_FOLDER') or os.path.join(BASE_DIR, 'logs')
    ENABLE_FILE_LOGGING = True

    # Tokens and QR artifacts
    RSVP_TOKEN_LENGTH = int(os.environ.get('RSVP_TOKEN_LENGTH', 16))
    QR_TARGET_WIDTH = int(os.environ.get('QR_TARGET_WIDTH', 512))  # pixels
    QR_MARGIN = int(os.environ.get('QR_MARGIN', 2))  # modules
    QR_ERROR_CORRECTION = os.environ.get('QR_ERROR_CORRECTION', 'M')

    # Scanner
    SCAN_COOLDOWN_MS = int(os.environ.get('SCAN_COOLDOWN_MS', 500))
    SCAN_BUSY_POLICY = os.environ.get('SCAN_BUSY_POLICY', 'drop')  # drop | queue
    SCAN_IDLE_HINT = 'Point the camera at a QR code'
    SCAN_FRAME_INTERVAL = 0.03  # seconds

    CAMERA_INDEX = int(os.environ.get('CAMERA_INDEX', 0))
    CAMERA_FACING_MODE = os.environ.get('CAMERA_FACING_MODE', 'environment')
    CAMERA_WIDTH = 1280
    CAMERA_HEIGHT = 720
    REQUIRE_SECURE_CONTEXT = _env_flag('REQUIRE_SECURE_CONTEXT')

    # Upper bound on one store round trip during check-in
    CHECK_IN_TIMEOUT_SECONDS = float(os.environ.get('CHECK_IN_TIMEOUT_SECONDS', 5))

    @classmethod
    def validate(cls):
        """Raise ValueError when required settings are missing."""


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_ECHO = _env_flag('SQL_DEBUG')


class ProductionConfig(Config):
    DEBUG = False
    SECRET_KEY = os.environ.get('SECRET_KEY')
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL')

    # Browsers only expose the camera on secure origins
    REQUIRE_SECURE_CONTEXT = True

    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # host:port or socket path; errors are mirrored there when set
    SYSLOG_SERVER = os.environ.get('SYSLOG_SERVER')

    @classmethod
    def validate(cls):
        if not cls.SECRET_KEY:
            raise ValueError("SECRET_KEY environment variable must be set in production")
        if not cls.SQLALCHEMY_DATABASE_URI:
            raise ValueError("DATABASE_URL environment variable must be set in production")


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    WTF_CSRF_ENABLED = False
    ENABLE_FILE_LOGGING = False
    SCAN_COOLDOWN_MS = 200

    # Inline check-ins share the request's session and in-memory database
    CHECK_IN_TIMEOUT_SECONDS = None


config_by_name = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig
}
