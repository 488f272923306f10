"""Domain errors raised by the access, checkout and webhook services.

Every precondition failure is a named error with a human-readable message.
The app-level error handler renders them as {"error": ..., "code": ...}.
"""


class DomainError(Exception):
    """Base class. `code` is stable for clients, `message` is for humans."""

    status_code = 400
    code = "error"

    def __init__(self, message, code=None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self):
        return {"error": self.message, "code": self.code}


class NotFound(DomainError):
    code = "not_found"


class AlreadyPurchased(DomainError):
    code = "already_purchased"


class NotConfigured(DomainError):
    code = "payments_not_configured"


class ValidationFailure(DomainError):
    code = "validation_failed"


class SignatureInvalid(DomainError):
    code = "invalid_signature"


class Unmatched(DomainError):
    """Webhook references a checkout session we never recorded.

    Logged and acknowledged by the reconciler, never returned to Stripe
    as an error.
    """

    code = "unmatched"


# Messages shown to leads and hosts.
ERRORS = {
    "EVENT_NOT_FOUND": "Ops, this event does not exist, please check",
    "MEMBERSHIP_NOT_FOUND": "Membership not found, please check the membership id",
    "MEMBERSHIP_NOT_ON_EVENT": "This membership is not available for this event",
    "LEAD_WITH_TOKEN_NOT_FOUND": (
        "Ops, we cant find a lead with this token, please check if you have "
        "the correct details"
    ),
    "CONTACT_NOT_FOUND": (
        "Ops, we cant find a contact with this email, please check if you "
        "have the correct details"
    ),
    "USER_NOT_FOUND": "User not found",
    "MEMBERSHIP_ALREADY_PURCHASED": "This membership has already been purchased",
    "MEMBERSHIP_NOT_ACTIVE": "This lead has not paid for the membership",
    "MEMBERSHIP_IS_FREE": "This membership is free and does not need to be purchased",
    "STRIPE_ACCOUNT_ID_NOT_FOUND": (
        "The host has not configured payments, as a result you cannot "
        "initiate a payment."
    ),
    "DATES_REQUIRED": "At least one date is required",
    "EMAIL_MISMATCH": "The email provided does not match this access link",
}
