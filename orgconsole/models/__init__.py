# SQLModel definitions, imported here to ensure metadata is populated for Alembic.
from .base import IdentifiedModel, TimestampedModel  # noqa: F401
from .organization import Organization  # noqa: F401
from .user import User  # noqa: F401
from .org_membership import OrganizationMembership  # noqa: F401
from .branch import Branch, BranchMembership  # noqa: F401
from .invitation import Invitation  # noqa: F401
