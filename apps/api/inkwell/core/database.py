from sqlmodel import Session, SQLModel, create_engine

from inkwell.core.config import settings
import inkwell.models  # noqa: F401  # ensure model metadata is registered


_connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}
engine = create_engine(settings.database_url, echo=False, pool_pre_ping=True, connect_args=_connect_args)


def init_db() -> None:
    SQLModel.metadata.create_all(engine)


def get_session():
    with Session(engine) as session:
        yield session


def session_factory() -> Session:
    """Standalone session for work that runs outside the request dependency, e.g. thread-pool fetches."""
    return Session(engine)


def get_session_factory():
    return session_factory
