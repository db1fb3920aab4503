# Models package — import all models here so Alembic can discover them.

from garage_billing.models.user import User  # noqa: F401
from garage_billing.models.garage import Garage, Pass  # noqa: F401
from garage_billing.models.subscription import Subscription  # noqa: F401
from garage_billing.models.payment import Payment, PaymentMethod  # noqa: F401
from garage_billing.models.price_history import PassPriceHistory  # noqa: F401
from garage_billing.models.webhook_event import WebhookEvent  # noqa: F401
