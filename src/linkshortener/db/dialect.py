from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


def upsert_insert(session: Session, model):
    """INSERT construct supporting ON CONFLICT for the session's backend."""
    name = session.get_bind().dialect.name
    try:
        return _INSERTS[name](model)
    except KeyError:
        raise NotImplementedError(f"ON CONFLICT upserts are not supported on {name!r}") from None
