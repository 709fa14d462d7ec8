"""Billing exception taxonomy.

Blueprints translate these into JSON responses:

    VerificationError  -> 400  (bad or missing Stripe signature, no retry benefit)
    MalformedPayload   -> 500  (valid signature but unparseable body)
    StoreError         -> 400  (write failure during a handler, Stripe retries)
    PortalError        -> 404 / 400
    CheckoutError      -> 400

"Not found" races inside the reconciler are never raised; they are logged
and acknowledged.
"""


class BillingError(Exception):
    """Base class for all billing errors."""


class VerificationError(BillingError):
    """The webhook request could not be authenticated."""


class MissingSignature(VerificationError):
    def __init__(self, message="Missing stripe-signature header"):
        super().__init__(message)


class InvalidSignature(VerificationError):
    pass


class MalformedPayload(BillingError):
    pass


class StoreError(BillingError):
    """A store read or write failed. Retryable from Stripe's point of view.

    ``code`` carries the backend error code when there is one (Postgres
    SQLSTATE for the Supabase store).
    """

    def __init__(self, message, code=None):
        super().__init__(message)
        self.code = code


class PortalError(BillingError):
    status_code = 400


class SubscriptionNotFound(PortalError):
    status_code = 404

    def __init__(self, message="No subscription found for user"):
        super().__init__(message)


class MissingCustomer(PortalError):
    status_code = 400

    def __init__(self, message="No Stripe customer ID found"):
        super().__init__(message)


class CheckoutError(BillingError):
    status_code = 400
