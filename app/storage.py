import logging
from datetime import datetime, timezone
from typing import Generator

from sqlalchemy import create_engine, event, insert, text, update
from sqlalchemy.orm import sessionmaker, Session, declarative_base, aliased
from sqlalchemy.exc import IntegrityError

from app.config import settings
from app.errors import DuplicateIdentity, InvalidCredentials, NotFound
from app.utils import hash_password, verify_password

logger = logging.getLogger(__name__)

_is_sqlite = settings.DATABASE_URL.startswith("sqlite")

# check_same_thread=False is required for SQLite to work with FastAPI's threadpool
engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if _is_sqlite else {},
    echo=False,
)

if _is_sqlite:
    @event.listens_for(engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        # SQLite ignores REFERENCES clauses unless enabled per connection
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {settings.DATABASE_URL}")
    try:
        # Import models to register them with Base.metadata
        from app.models import User, Message  # noqa: F401

        logger.debug("Creating database tables...")
        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and both tables exist, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
            logger.debug("Database connectivity OK")
            for table in ("users", "messages"):
                # Raises if the table is missing
                db.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar()
            logger.debug("users and messages tables found, schema is applied")
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


def _public_profile(user) -> dict:
    return {
        "username": user.username,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "phone": user.phone,
    }


# =============================================================================
# User (credential) Repository Functions
# =============================================================================

def register(
    db: Session,
    username: str,
    password: str,
    first_name: str,
    last_name: str,
    phone: str,
) -> dict:
    """
    Register a new user.

    The username primary key makes the insert itself the uniqueness check,
    so two concurrent registrations cannot both succeed.

    Returns:
        {username, password, first_name, last_name, phone} where password
        is the bcrypt hash.

    Raises:
        DuplicateIdentity: username already taken
    """
    from app.models import User

    logger.info(f"Registering user: {username}")

    hashed = hash_password(password, settings.BCRYPT_WORK_FACTOR)

    try:
        db.execute(
            insert(User).values(
                username=username,
                password=hashed,
                first_name=first_name,
                last_name=last_name,
                phone=phone,
                join_at=_now(),
            )
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"Duplicate username rejected: {username}")
        raise DuplicateIdentity(f"Duplicate username: {username}")

    logger.info(f"User registered: {username}")
    return {
        "username": username,
        "password": hashed,
        "first_name": first_name,
        "last_name": last_name,
        "phone": phone,
    }


def authenticate(db: Session, username: str, password: str) -> bool:
    """
    Check a username/password pair. Has no side effects.

    Raises:
        InvalidCredentials: no such user
    """
    from app.models import User

    logger.debug(f"Authenticating user: {username}")
    user = db.get(User, username)
    if user is None:
        logger.info(f"Authentication for unknown user: {username}")
        raise InvalidCredentials("Invalid username/password")

    return verify_password(password, user.password)


def update_login_timestamp(db: Session, username: str) -> None:
    """Set last_login_at to now for the user."""
    from app.models import User

    db.execute(
        update(User)
        .where(User.username == username)
        .values(last_login_at=_now())
    )
    db.commit()
    logger.debug(f"Updated last_login_at for {username}")


def all_users(db: Session) -> list:
    """Basic info on all users, ordered by username."""
    from app.models import User

    users = db.query(User).order_by(User.username.asc()).all()
    logger.info(f"Listed {len(users)} users")
    return [_public_profile(u) for u in users]


def get_user(db: Session, username: str) -> dict:
    """
    Get user profile by username.

    Returns:
        {username, first_name, last_name, phone, join_at, last_login_at}

    Raises:
        NotFound: no such user
    """
    from app.models import User

    user = db.get(User, username)
    if user is None:
        raise NotFound(f"No user: {username}")

    profile = _public_profile(user)
    profile["join_at"] = user.join_at
    profile["last_login_at"] = user.last_login_at
    return profile


def _user_messages(db: Session, username: str, direction: str) -> list:
    from app.models import User, Message

    # direction "from": messages the user sent, joined to the recipient
    if direction == "from":
        own_col, other_col, other_key = Message.from_username, Message.to_username, "to_user"
    else:
        own_col, other_col, other_key = Message.to_username, Message.from_username, "from_user"

    rows = (
        db.query(Message, User)
        .join(User, other_col == User.username)
        .filter(own_col == username)
        .order_by(Message.sent_at.asc(), Message.id.asc())
        .all()
    )
    logger.debug(f"Found {len(rows)} messages {direction} {username}")

    return [
        {
            "id": msg.id,
            other_key: _public_profile(other),
            "body": msg.body,
            "sent_at": msg.sent_at,
            "read_at": msg.read_at,
        }
        for msg, other in rows
    ]


def messages_from(db: Session, username: str) -> list:
    """Messages sent by this user: [{id, to_user, body, sent_at, read_at}]."""
    return _user_messages(db, username, "from")


def messages_to(db: Session, username: str) -> list:
    """Messages sent to this user: [{id, from_user, body, sent_at, read_at}]."""
    return _user_messages(db, username, "to")


# =============================================================================
# Message Repository Functions
# =============================================================================

def create_message(db: Session, from_username: str, to_username: str, body: str) -> dict:
    """
    Store a new message.

    Returns:
        {id, from_username, to_username, body, sent_at}

    Raises:
        NotFound: a participant does not exist (foreign key rejected the row)
    """
    from app.models import User, Message

    logger.info(f"Creating message: from={from_username}, to={to_username}")

    message = Message(
        from_username=from_username,
        to_username=to_username,
        body=body,
        sent_at=_now(),
    )
    db.add(message)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        # Either participant can be missing: the sender comes from a token
        missing = to_username
        for username in (from_username, to_username):
            if db.get(User, username) is None:
                missing = username
                break
        logger.info(f"Message rejected, unknown user: {missing}")
        raise NotFound(f"No user: {missing}")
    db.refresh(message)

    logger.info(f"Message created: id={message.id}")
    return {
        "id": message.id,
        "from_username": message.from_username,
        "to_username": message.to_username,
        "body": message.body,
        "sent_at": message.sent_at,
    }


def get_message(db: Session, message_id: int) -> dict:
    """
    Get a message with both participants' public profiles.

    Returns:
        {id, from_user, to_user, body, sent_at, read_at}

    Raises:
        NotFound: no such message
    """
    from app.models import User, Message

    FromUser = aliased(User)
    ToUser = aliased(User)

    row = (
        db.query(Message, FromUser, ToUser)
        .join(FromUser, Message.from_username == FromUser.username)
        .join(ToUser, Message.to_username == ToUser.username)
        .filter(Message.id == message_id)
        .first()
    )
    logger.info(f"Message lookup {message_id}: {'found' if row else 'not found'}")

    if row is None:
        raise NotFound(f"No such message: {message_id}")

    msg, from_user, to_user = row
    return {
        "id": msg.id,
        "from_user": _public_profile(from_user),
        "to_user": _public_profile(to_user),
        "body": msg.body,
        "sent_at": msg.sent_at,
        "read_at": msg.read_at,
    }


def mark_read(db: Session, message_id: int) -> dict:
    """
    Set read_at on a message if it is not already set.

    Identity is not checked here; callers authorize first.

    Returns:
        {id, read_at}

    Raises:
        NotFound: no such message
    """
    from app.models import Message

    # read_at only moves from NULL to a timestamp, never again
    db.execute(
        update(Message)
        .where(Message.id == message_id, Message.read_at.is_(None))
        .values(read_at=_now())
    )
    db.commit()

    message = db.get(Message, message_id)
    if message is None:
        raise NotFound(f"No such message: {message_id}")

    logger.info(f"Message {message_id} read_at={message.read_at}")
    return {"id": message.id, "read_at": message.read_at}
