from contextlib import contextmanager

from resolution_bingo import db


@contextmanager
def atomic():
    """Commit the session on success; roll back everything on any error."""
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
