from contextlib import contextmanager

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


@contextmanager
def atomic():
    """
    Run a block as one unit of work: commit on success, roll back on any error.
    Everything flushed inside the block becomes visible together or not at all.
    """
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
