"""
Controllers for signing in and out.

On success, :func:`login` redirects to the dashboard for the account's role.
The routes write the identity cookie; controllers only talk to the
:class:`.AccountLifecycle`.
"""

from typing import Any, Dict
from http import HTTPStatus
import logging

from werkzeug.datastructures import MultiDict
from wtforms import Form, PasswordField, StringField
from wtforms.validators import DataRequired

from ..auth import errors
from ..auth.lifecycle import AccountLifecycle
from ..domain import to_jsonable
from ..exceptions import AuthenticationFailed, ErrorKind
from . import ResponseData

logger = logging.getLogger(__name__)


class LoginForm(Form):
    """Log in form."""

    email = StringField('E-mail', validators=[
        DataRequired(errors.MESSAGES[ErrorKind.MISSING_EMAIL])
    ])
    password = PasswordField('Password', validators=[
        DataRequired(errors.MESSAGES[ErrorKind.MISSING_PASSWORD])
    ])


def login(method: str, form_data: MultiDict,
          lifecycle: AccountLifecycle) -> ResponseData:
    """
    Provide the login form, or sign in.

    Parameters
    ----------
    method : str
        ``GET`` or ``POST``.
    form_data : MultiDict
        Should include ``email`` and ``password``.
    lifecycle : :class:`.AccountLifecycle`

    Returns
    -------
    dict
        Additional data to add to the response.
    int
        Status code. This should be 303 (See Other) if all goes well.
    dict
        Headers to add to the response.

    """
    if method == 'GET':
        logger.debug('Request for login form')
        return {'fields': list(LoginForm().data)}, HTTPStatus.OK, {}

    logger.debug('Login form submitted')
    form = LoginForm(form_data)
    if not form.validate():
        logger.debug('Form data is not valid')
        return {'errors': form.errors}, HTTPStatus.BAD_REQUEST, {}

    try:
        session = lifecycle.login(form.email.data, form.password.data)
    except AuthenticationFailed as e:
        logger.debug('Login failed (%s)', e.kind.value)
        data: Dict[str, Any] = {'error': str(e), 'kind': e.kind.value}
        return data, HTTPStatus.BAD_REQUEST, {}

    logger.info('Signed in %s as %s', session.uid, session.role)
    location = lifecycle.dashboard_for(session.role)
    return {'session': to_jsonable(session)}, HTTPStatus.SEE_OTHER, \
        {'Location': location}


def logout(lifecycle: AccountLifecycle) -> ResponseData:
    """Sign out, and redirect to the login page."""
    location = lifecycle.logout()
    return {}, HTTPStatus.SEE_OTHER, {'Location': location}


def auth_status(lifecycle: AccountLifecycle) -> ResponseData:
    """Who is signed in, if anybody."""
    user = lifecycle.current_user()
    if user is None:
        return {'authenticated': False, 'user': None}, HTTPStatus.OK, {}
    return {'authenticated': True, 'user': to_jsonable(user)}, \
        HTTPStatus.OK, {}
