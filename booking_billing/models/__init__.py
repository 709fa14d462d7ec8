# Models package — import all models here so Alembic can discover them.

from booking_billing.models.tier import SubscriptionTier  # noqa: F401
from booking_billing.models.subscription import UserSubscription  # noqa: F401
from booking_billing.models.subscription_event import SubscriptionEvent  # noqa: F401
