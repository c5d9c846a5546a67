"""Exception hierarchy for the notification engine."""


class NotifierError(Exception):
    """Base class for engine errors."""


class DeliveryError(NotifierError):
    """A channel adapter could not deliver a message.

    ``permanent`` marks failures that must not be retried (invalid or
    unregistered address).
    """

    def __init__(self, message: str, permanent: bool = False) -> None:
        super().__init__(message)
        self.permanent = permanent


class ChannelUnavailableError(NotifierError):
    """No channel in the precedence list can reach the recipient."""


class WebhookSignatureError(NotifierError):
    """Webhook signature missing, malformed or not matching the secret."""


class WebhookPayloadError(NotifierError):
    """Verified webhook body could not be parsed into an event."""


class NotFoundError(NotifierError):
    """A referenced habit, communication or profile does not exist."""
