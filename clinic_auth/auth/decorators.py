"""
Role-based protection of Flask routes.

This module provides :func:`role_required`, a decorator factory used to
protect routes that belong to one role's part of the site. For example:

.. code-block:: python

   from clinic_auth.auth.decorators import role_required
   from clinic_auth.domain import Role


   @blueprint.route('/doctor/dashboard', methods=['GET'])
   @role_required(Role.DOCTOR)
   def doctor_dashboard():
       session = g.session
       ...


When the decorated route function is called...

- If nobody is signed in, or the account cannot be loaded, the response is a
  redirect to the login page.
- If the account is pending or rejected, the identity is signed out and the
  response is a redirect to the login page.
- If the account has some other role, the response is a redirect to that
  role's dashboard.
- Otherwise the :class:`.ResolvedSession` is put on ``g.session``, and the
  route is called with the original parameters.

"""

from typing import Any, Callable
from functools import wraps
from http import HTTPStatus
import logging

from flask import g, make_response, redirect

from ..exceptions import AccessRedirect

logger = logging.getLogger(__name__)


def role_required(role: str) -> Callable:
    """
    Generate a decorator that admits only accounts with ``role``.

    Parameters
    ----------
    role : str
        One of :attr:`.Role.ALL`.

    Returns
    -------
    function

    """
    def protector(func: Callable) -> Callable:
        """Decorator that enforces the role."""
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                session = g.lifecycle.require_auth(role)
            except AccessRedirect as e:
                logger.debug('Redirecting to %s (%s)', e.location,
                             e.kind.value)
                return make_response(redirect(e.location,
                                              code=HTTPStatus.SEE_OTHER))
            logger.debug('Request is authorized, proceeding')
            g.session = session
            return func(*args, **kwargs)
        return wrapper
    return protector


def login_required(func: Callable) -> Callable:
    """Admit any signed-in user with an account; ``g.user`` is set."""
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        user = g.lifecycle.current_user()
        if user is None:
            logger.debug('Nobody is signed in; redirecting to login')
            return make_response(redirect(g.lifecycle.login_path,
                                          code=HTTPStatus.SEE_OTHER))
        g.user = user
        return func(*args, **kwargs)
    return wrapper
