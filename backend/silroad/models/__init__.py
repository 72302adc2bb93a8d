# Import all models so Base.metadata is populated for Alembic autogenerate.
from silroad.models.user import User  # noqa: F401
from silroad.models.session import Session  # noqa: F401
