# Imported by create_app so Alembic sees every table.

from storefront.models.profile import Profile  # noqa: F401
from storefront.models.product import Product  # noqa: F401
from storefront.models.payment import Payment  # noqa: F401
from storefront.models.purchase import Purchase  # noqa: F401
from storefront.models.stripe_event import StripeEvent  # noqa: F401
