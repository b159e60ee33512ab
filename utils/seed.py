import logging

from models import db
from models.user import Role

logger = logging.getLogger(__name__)

# CLIENT books for themselves; STAFF and ADMIN get the engine's staff capability
DEFAULT_ROLES = ["CLIENT", "STAFF", "ADMIN"]


def ensure_role(name: str) -> Role:
    """Fetch a role by name, adding it to the session if it does not exist yet."""
    role = Role.query.filter_by(name=name).first()
    if role is None:
        role = Role(name=name)
        db.session.add(role)
        db.session.flush()
    return role


def seed_roles() -> list:
    existing = {r.name for r in Role.query.all()}
    created = [name for name in DEFAULT_ROLES if name not in existing]
    for name in created:
        db.session.add(Role(name=name))
    db.session.commit()
    if created:
        logger.info("Seeded roles: %s", ", ".join(created))
    return created
