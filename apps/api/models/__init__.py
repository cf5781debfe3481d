"""Models package."""

from .user import User
from .point_transaction import PointTransaction
from .point_rule import PointRule
