# Models package — import all models here so create_all() can discover them.

from eventpass.models.user import User  # noqa: F401
from eventpass.models.contact import Contact  # noqa: F401
from eventpass.models.membership import Membership  # noqa: F401
from eventpass.models.event import Event, EventMembership  # noqa: F401
from eventpass.models.lead import Lead  # noqa: F401
from eventpass.models.payment import Payment  # noqa: F401
from eventpass.models.booking import Booking  # noqa: F401
from eventpass.models.stripe_event import StripeEvent  # noqa: F401
from eventpass.models.audit import AuditEvent  # noqa: F401
