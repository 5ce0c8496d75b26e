from .user import User  # noqa: F401
from .membership import MembershipRecord, MembershipType  # noqa: F401
