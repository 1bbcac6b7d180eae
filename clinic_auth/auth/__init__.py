"""
Attaches the signed-in identity and an account resolver to each request.

The identity travels between requests as a signed token in an HttpOnly
cookie. Before each request, :class:`Auth` restores it into a fresh
:class:`.LocalIdentityProvider` and wraps that in an
:class:`.AccountLifecycle`, available as ``g.lifecycle``. After the request,
the cookie is rewritten if the identity signed in or out.
"""

from typing import Optional
import logging

from flask import Flask, Response, current_app, g, request

from ..services.documents import DocumentStore, InMemoryDocumentStore
from ..services.identity import CredentialRegistry, LocalIdentityProvider
from ..services.notifications import NotificationSink
from . import decorators, errors
from .lifecycle import AccountLifecycle, BootstrapCredential, \
    bootstrap_from_config

logger = logging.getLogger(__name__)


class Auth(object):
    """
    Attaches session and account information to the request.

    Intended for use in a Flask application factory, for example:

    .. code-block:: python

       from flask import Flask
       from clinic_auth.auth import Auth
       from someapp import routes


       def create_web_app() -> Flask:
          app = Flask('someapp')
          app.config.from_object(config)
          Auth(app, store=SQLDocumentStore.from_uri(...))
          app.register_blueprint(routes.blueprint)
          return app

    Parameters
    ----------
    app : :class:`Flask`
    store : :class:`.DocumentStore`
        Where accounts and notifications live. Defaults to a new in-memory
        store.
    registry : :class:`.CredentialRegistry`
        Shared by all requests. Defaults to a new registry configured from
        ``app.config``.

    """

    def __init__(self, app: Optional[Flask] = None,
                 store: Optional[DocumentStore] = None,
                 registry: Optional[CredentialRegistry] = None) -> None:
        self.store = store
        self.registry = registry
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        """
        Attach :meth:`.load_session` and :meth:`.save_session` to the app.

        Parameters
        ----------
        app : :class:`Flask`

        """
        if self.store is None:
            self.store = InMemoryDocumentStore()
        if self.registry is None:
            self.registry = CredentialRegistry(
                self.store,
                min_password_length=app.config.get('MIN_PASSWORD_LENGTH', 6),
                max_failures=app.config.get('MAX_FAILED_LOGINS', 5),
                lockout_seconds=app.config.get('LOCKOUT_SECONDS', 300)
            )
        app.extensions['clinic_auth'] = self
        app.before_request(self.load_session)
        app.after_request(self.save_session)

    def _bootstrap(self) -> Optional[BootstrapCredential]:
        return bootstrap_from_config(
            current_app.config.get('BOOTSTRAP_ADMIN_EMAIL'),
            current_app.config.get('BOOTSTRAP_ADMIN_SECRET'),
            current_app.config.get('BOOTSTRAP_ADMIN_NAME')
        )

    def load_session(self) -> None:
        """Restore the identity from the cookie, and build the resolver."""
        cookie_name = current_app.config['AUTH_SESSION_COOKIE_NAME']
        token = request.cookies.get(cookie_name, None)
        identities = LocalIdentityProvider(
            self.registry,  # type: ignore
            current_app.config['JWT_SECRET'], token,
            duration=current_app.config['SESSION_DURATION']
        )
        if token and identities.current is None:
            logger.debug('Session cookie did not yield an identity')
        g.identity_token = token
        g.initial_identity = identities.current
        g.identities = identities
        g.lifecycle = AccountLifecycle(
            identities, self.store,  # type: ignore
            notifier=NotificationSink(self.store),  # type: ignore
            bootstrap=self._bootstrap(),
            dashboards=current_app.config['ROLE_DASHBOARDS'],
            login_path=current_app.config['LOGIN_PATH']
        )

    def save_session(self, response: Response) -> Response:
        """Set or clear the session cookie if the identity changed."""
        identities: Optional[LocalIdentityProvider] = g.get('identities')
        if identities is None:
            return response
        stale = g.get('identity_token') and g.get('initial_identity') is None
        if identities.current == g.get('initial_identity') and not stale:
            return response

        cookie_name = current_app.config['AUTH_SESSION_COOKIE_NAME']
        params = dict(httponly=True)
        if current_app.config['AUTH_SESSION_COOKIE_SECURE']:
            params.update({'secure': True, 'samesite': 'lax'})
        token = identities.token
        if token is None:
            logger.debug('Clearing session cookie')
            response.set_cookie(cookie_name, '', max_age=0, **params)
        else:
            logger.debug('Setting session cookie')
            response.set_cookie(cookie_name, token,
                                max_age=current_app.config['SESSION_DURATION'],
                                **params)
        return response


def current_lifecycle() -> AccountLifecycle:
    """The :class:`.AccountLifecycle` for the current request."""
    lifecycle: AccountLifecycle = g.lifecycle
    return lifecycle


__all__ = ('Auth', 'AccountLifecycle', 'current_lifecycle', 'decorators',
           'errors')
