from contextlib import contextmanager
import logging
import threading

from sqlalchemy import create_engine, event
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from models.base_model import Base
from models.booking import Booking
from models.equipment import Equipment
from models.refresh_token import RefreshToken
from models.user import User
from services.errors import StorageUnavailable

logger = logging.getLogger(__name__)

# Map model names for easy querying
classes = {
    "User": User,
    "Equipment": Equipment,
    "Booking": Booking,
    "RefreshToken": RefreshToken,
}


class DBStorage:
    """
    SQLAlchemy-backed persistent store.

    One instance is built by create_app() and handed to the services that
    need it; there is no module-level singleton.
    """
    __engine = None
    __session = None

    def __init__(self, database_url: str, echo: bool = False):
        """Initialize engine for the given URL (sqlite:// for in-memory)."""
        engine_kwargs = {"echo": echo, "pool_pre_ping": True}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                # Single shared connection so every session sees the same in-memory DB
                engine_kwargs["poolclass"] = StaticPool
        self.__engine = create_engine(database_url, **engine_kwargs)

        if self.__engine.url.get_backend_name() == "sqlite":
            # Enable SQLite foreign keys (needed for ON DELETE CASCADE)
            @event.listens_for(self.__engine, "connect")
            def _set_sqlite_pragma(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

        self.__locks = {}
        self.__locks_guard = threading.Lock()

    def reload(self):
        """Create tables and start session"""
        Base.metadata.create_all(self.__engine)
        session_factory = sessionmaker(bind=self.__engine, expire_on_commit=False)
        self.__session = scoped_session(session_factory)

    def drop_all(self):
        """Drop every table (tests and local resets only)."""
        self.__session.remove()
        Base.metadata.drop_all(self.__engine)

    @contextmanager
    def _db_errors(self):
        """Roll back on failure; connection-level failures become StorageUnavailable."""
        try:
            yield
        except DBAPIError as exc:
            self.__session.rollback()
            if isinstance(exc, OperationalError) or exc.connection_invalidated:
                logger.warning("Database unavailable: %s", exc.__class__.__name__)
                raise StorageUnavailable() from exc
            raise
        except SQLAlchemyError:
            self.__session.rollback()
            raise

    def new(self, obj):
        """Add object to session"""
        self.__session.add(obj)

    def save(self):
        """Commit session"""
        with self._db_errors():
            self.__session.commit()

    def delete(self, obj=None):
        """Delete object if exists (hard delete)"""
        if obj:
            self.__session.delete(obj)

    def get(self, cls, id):
        """Fetch one object by class and ID"""
        if cls in classes.values():
            with self._db_errors():
                return self.__session.get(cls, id)
        return None

    def close(self):
        """Remove session (for API teardown)"""
        self.__session.remove()

    # expose the SQLAlchemy session for advanced querying (joins, filters, etc.)
    def get_session(self):
        return self.__session

    # -- lookups used by the services ---------------------------------------

    def get_user(self, user_id):
        return self.get(User, user_id)

    def get_equipment(self, resource_id):
        return self.get(Equipment, resource_id)

    def get_booking(self, booking_id):
        return self.get(Booking, booking_id)

    # -- bookings -------------------------------------------------------------

    def find_bookings(self, resource_id, status_not_in=(), exclude_id=None,
                      start_from=None, start_to=None):
        """Bookings of one resource ordered by start time, optionally filtered."""
        query = (
            self.__session.query(Booking)
            .filter(Booking.equipment_id == resource_id)
            .populate_existing()
        )
        if status_not_in:
            query = query.filter(Booking.status.notin_(list(status_not_in)))
        if exclude_id:
            query = query.filter(Booking.id != exclude_id)
        if start_from is not None:
            query = query.filter(Booking.start_time >= start_from)
        if start_to is not None:
            query = query.filter(Booking.start_time <= start_to)
        with self._db_errors():
            return query.order_by(Booking.start_time.asc()).all()

    def insert_booking(self, booking):
        self.new(booking)
        self.save()
        return booking

    def update_booking(self, booking):
        self.new(booking)
        self.save()
        return booking

    def _resource_lock(self, resource_id):
        with self.__locks_guard:
            return self.__locks.setdefault(resource_id, threading.Lock())

    @contextmanager
    def booking_guard(self, resource_id):
        """
        Serialize check-then-write for one resource.

        In-process lock per resource, plus SELECT ... FOR UPDATE on the
        equipment row so other processes queue on databases with row locks.
        """
        session = self.__session
        with self._resource_lock(resource_id):
            with self._db_errors():
                session.query(Equipment).filter(Equipment.id == resource_id).with_for_update().first()
            try:
                yield
            except BaseException:
                session.rollback()
                raise
            else:
                # Releases the row lock when the body performed no write
                self.save()

    # -- refresh tokens -------------------------------------------------------

    def find_refresh_token(self, token):
        with self._db_errors():
            return self.__session.query(RefreshToken).filter(RefreshToken.token == token).first()

    def insert_refresh_token(self, record):
        self.new(record)
        self.save()
        return record

    def delete_refresh_token(self, token) -> bool:
        """Delete one record; True only for the caller that actually removed it."""
        with self._db_errors():
            deleted = (
                self.__session.query(RefreshToken)
                .filter(RefreshToken.token == token)
                .delete(synchronize_session=False)
            )
        self.save()
        return deleted > 0

    def delete_refresh_tokens_for_user(self, user_id) -> int:
        with self._db_errors():
            deleted = (
                self.__session.query(RefreshToken)
                .filter(RefreshToken.user_id == user_id)
                .delete(synchronize_session=False)
            )
        self.save()
        return deleted

    def purge_expired_refresh_tokens(self, now) -> int:
        with self._db_errors():
            deleted = (
                self.__session.query(RefreshToken)
                .filter(RefreshToken.expires_at <= now)
                .delete(synchronize_session=False)
            )
        self.save()
        return deleted
