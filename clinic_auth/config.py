"""Flask configuration."""
import secrets
import os

#################### Routing ####################
LOGIN_PATH = os.environ.get('LOGIN_PATH', '/login')
"""Where unauthenticated users are sent, and where logout lands."""

ROLE_DASHBOARDS = {
    'patient': os.environ.get('PATIENT_DASHBOARD', '/patient/dashboard'),
    'doctor': os.environ.get('DOCTOR_DASHBOARD', '/doctor/dashboard'),
    'admin': os.environ.get('ADMIN_DASHBOARD', '/admin/dashboard'),
}
"""Landing page for each role. Unknown roles go to `LOGIN_PATH`."""


#################### Identity ####################
JWT_SECRET = os.environ.get('JWT_SECRET', secrets.token_urlsafe(16))
"""Signs the identity token carried in the session cookie."""

SESSION_DURATION = int(os.environ.get('SESSION_DURATION', '36000'))
"""Seconds before a signed-in identity must sign in again."""

AUTH_SESSION_COOKIE_NAME = os.environ.get('AUTH_SESSION_COOKIE_NAME',
                                          'clinic_session')
AUTH_SESSION_COOKIE_SECURE = bool(int(os.environ.get(
    'AUTH_SESSION_COOKIE_SECURE', '1'
)))

MIN_PASSWORD_LENGTH = int(os.environ.get('MIN_PASSWORD_LENGTH', '6'))

MAX_FAILED_LOGINS = int(os.environ.get('MAX_FAILED_LOGINS', '5'))
"""Consecutive bad passwords before an identity is temporarily locked."""

LOCKOUT_SECONDS = int(os.environ.get('LOCKOUT_SECONDS', '300'))


#################### Bootstrap admin ####################
BOOTSTRAP_ADMIN_EMAIL = os.environ.get('CLINIC_BOOTSTRAP_ADMIN_EMAIL')
BOOTSTRAP_ADMIN_SECRET = os.environ.get('CLINIC_BOOTSTRAP_ADMIN_SECRET')
"""Provisioned out of band. If either is unset, there is no bootstrap login.

Signing in with exactly this e-mail and secret creates (or repairs) an
active admin account. Rotate or unset it once a real admin exists."""

BOOTSTRAP_ADMIN_NAME = os.environ.get('CLINIC_BOOTSTRAP_ADMIN_NAME',
                                      'System Administrator')


#################### Storage ####################
SQLALCHEMY_DATABASE_URI = os.environ.get('SQLALCHEMY_DATABASE_URI', '')
"""Backing database for documents. If empty, documents are kept in memory."""

CREATE_DB = bool(int(os.environ.get('CREATE_DB', '1')))


#################### Minor configs ####################
SECRET_KEY = os.environ.get('SECRET_KEY', secrets.token_urlsafe(16))
"""Sets the `Flask` secret key. Not used for the identity cookie."""

LOGLEVEL = os.environ.get('LOGLEVEL', 'INFO')
LOG_JSON = bool(int(os.environ.get('LOG_JSON', '1')))
"""Emit structured (JSON) log lines."""

VERSION = '0.1.0'
