"""Application factory for the clinic web app."""

from typing import Optional
import logging

from flask import Flask

from . import config
from .app_logging import setup_logger
from .auth import Auth
from .routes import ui
from .services.documents import DocumentStore, InMemoryDocumentStore
from .services.identity import CredentialRegistry
from .services.sqlstore import SQLDocumentStore

logger = logging.getLogger(__name__)


def create_document_store(database_uri: str,
                          create: bool = True) -> DocumentStore:
    """SQL-backed store for ``database_uri``, or in-memory if it is empty."""
    if not database_uri:
        logger.info('No database configured; keeping documents in memory')
        return InMemoryDocumentStore()
    return SQLDocumentStore.from_uri(database_uri, create=create)


def create_web_app(store: Optional[DocumentStore] = None,
                   registry: Optional[CredentialRegistry] = None) -> Flask:
    """
    Initialize and configure the clinic application.

    Parameters
    ----------
    store : :class:`.DocumentStore`
        If not provided, one is created from ``SQLALCHEMY_DATABASE_URI``.
    registry : :class:`.CredentialRegistry`
        If not provided, credentials are kept in ``store``.

    Returns
    -------
    :class:`Flask`

    """
    app = Flask('clinic_auth')
    app.config.from_object(config)
    setup_logger(app.config['LOGLEVEL'], structured=app.config['LOG_JSON'])

    if store is None:
        store = create_document_store(app.config['SQLALCHEMY_DATABASE_URI'],
                                      create=app.config['CREATE_DB'])
    if app.config['BOOTSTRAP_ADMIN_EMAIL']:
        logger.warning('Bootstrap admin credential is provisioned')

    Auth(app, store=store, registry=registry)  # Sessions and accounts.
    app.register_blueprint(ui.blueprint)
    return app
