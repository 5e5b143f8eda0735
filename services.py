"""
services.py — Owned lifecycle for every store and component.

Built once at application startup, disposed at shutdown. The gateway reaches
components only through this container (app.state.services).
"""
import logging
from dataclasses import dataclass

from auth import DEFAULT_SECRET_KEY, SECRET_KEY, SessionIssuer
from credentials import CredentialStore
from database import init_db, make_engine, make_session_factory
from file_registry import FileRegistry
from share_tokens import ShareTokenManager
from storage import StorageBackend, build_storage

logger = logging.getLogger(__name__)


@dataclass
class VaultServices:
    engine: object
    session_factory: object
    storage: StorageBackend
    credentials: CredentialStore
    sessions: SessionIssuer
    registry: FileRegistry
    shares: ShareTokenManager

    def close(self):
        self.storage.close()
        self.engine.dispose()
        logger.info("FileVault services shut down")


def build_services(database_url: str = None, storage: StorageBackend = None,
                   secret_key: str = None, bcrypt_rounds: int = None,
                   session_ttl_seconds: int = None, session_clock=None,
                   share_clock=None) -> VaultServices:
    engine = make_engine(database_url)
    init_db(engine)
    storage = storage or build_storage()

    if (secret_key or SECRET_KEY) == DEFAULT_SECRET_KEY:
        logger.warning("SECRET_KEY is the built-in default; set SECRET_KEY in production")

    credentials = CredentialStore(bcrypt_rounds=bcrypt_rounds)
    session_kwargs = {"clock": session_clock} if session_clock else {}
    sessions = SessionIssuer(credentials, secret_key=secret_key, ttl_seconds=session_ttl_seconds,
                             **session_kwargs)
    registry = FileRegistry(storage)
    share_kwargs = {"clock": share_clock} if share_clock else {}
    shares = ShareTokenManager(registry, **share_kwargs)

    logger.info(f"FileVault services ready (storage={storage.backend_name})")
    return VaultServices(
        engine=engine,
        session_factory=make_session_factory(engine),
        storage=storage,
        credentials=credentials,
        sessions=sessions,
        registry=registry,
        shares=shares,
    )
