# SQLModel definitions, imported here so create_all sees every table.
from .base import UUIDMixin, TimestampMixin  # noqa: F401
from .user import User  # noqa: F401
from .linked_account import LinkedAccount  # noqa: F401
from .subscription import EventSubSubscription  # noqa: F401
from .redemption import RedemptionEvent  # noqa: F401
