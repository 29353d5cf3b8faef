"""Typed views of the Stripe Connect events the reconciler acts on.

Only fields the handlers read are declared; everything else Stripe sends is
ignored. Expandable references (``destination``, ``payment_intent`` ...) may
arrive either as an ID or as the expanded object, so they are normalised to
the ID on the way in.
"""

from typing import Annotated, Any, Generic, Literal, TypeVar, Union, get_args

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, TypeAdapter, ValidationError


class EventParseError(ValueError):
    """The body was authentic but is not a usable event."""


def _expandable_id(value: Any) -> Any:
    if isinstance(value, dict):
        return value.get("id")
    return value


ExpandableId = Annotated[str | None, BeforeValidator(_expandable_id)]


class StripeObject(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str


class PaymentError(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: str | None = None
    message: str | None = None


class PaymentIntent(StripeObject):
    amount: int
    currency: str
    application_fee_amount: int | None = None
    receipt_email: str | None = None
    description: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    last_payment_error: PaymentError | None = None


class RefundObject(StripeObject):
    amount: int
    currency: str
    status: str | None = None
    reason: str | None = None
    created: int | None = None


class RefundList(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: list[RefundObject] = Field(default_factory=list)


class Charge(StripeObject):
    amount: int
    amount_refunded: int = 0
    refunded: bool = False
    currency: str
    payment_intent: ExpandableId = None
    refunds: RefundList | None = None

    @property
    def fully_refunded(self) -> bool:
        return self.refunded or self.amount_refunded >= self.amount


class StripeTransfer(StripeObject):
    amount: int
    currency: str
    destination: ExpandableId = None
    source_transaction: ExpandableId = None
    description: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    created: int | None = None


class StripePayout(StripeObject):
    amount: int
    currency: str
    arrival_date: int | None = None
    method: str | None = None
    type: str | None = None
    description: str | None = None
    destination: str | dict[str, Any] | None = None
    failure_code: str | None = None
    failure_message: str | None = None
    created: int | None = None

    @property
    def bank_account_last4(self) -> str | None:
        if isinstance(self.destination, dict):
            return self.destination.get("last4")
        return None


class AccountRequirements(BaseModel):
    model_config = ConfigDict(extra="ignore")

    currently_due: list[str] = Field(default_factory=list)


class ConnectedAccount(StripeObject):
    charges_enabled: bool = False
    payouts_enabled: bool = False
    details_submitted: bool = False
    metadata: dict[str, str] = Field(default_factory=dict)
    requirements: AccountRequirements | None = None


class Application(StripeObject):
    name: str | None = None


ObjectT = TypeVar("ObjectT", bound=BaseModel)


class EventData(BaseModel, Generic[ObjectT]):
    model_config = ConfigDict(extra="ignore")

    object: ObjectT


class Envelope(BaseModel):
    """The part of every event that is read before routing."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    type: str
    account: str | None = None
    created: int | None = None


class AccountUpdated(Envelope):
    type: Literal["account.updated"]
    data: EventData[ConnectedAccount]


class AccountDeauthorized(Envelope):
    type: Literal["account.application.deauthorized"]
    data: EventData[Application]


class PaymentIntentSucceeded(Envelope):
    type: Literal["payment_intent.succeeded"]
    data: EventData[PaymentIntent]


class PaymentIntentFailed(Envelope):
    type: Literal["payment_intent.payment_failed"]
    data: EventData[PaymentIntent]


class TransferCreated(Envelope):
    type: Literal["transfer.created"]
    data: EventData[StripeTransfer]


class TransferReversed(Envelope):
    type: Literal["transfer.reversed"]
    data: EventData[StripeTransfer]


class PayoutPaid(Envelope):
    type: Literal["payout.paid"]
    data: EventData[StripePayout]


class PayoutFailed(Envelope):
    type: Literal["payout.failed"]
    data: EventData[StripePayout]


class ChargeRefunded(Envelope):
    type: Literal["charge.refunded"]
    data: EventData[Charge]


_EVENT_MODELS = (
    AccountUpdated,
    AccountDeauthorized,
    PaymentIntentSucceeded,
    PaymentIntentFailed,
    TransferCreated,
    TransferReversed,
    PayoutPaid,
    PayoutFailed,
    ChargeRefunded,
)

KnownEvent = Annotated[Union[_EVENT_MODELS], Field(discriminator="type")]

_known_event = TypeAdapter(KnownEvent)

KNOWN_EVENT_TYPES = frozenset(get_args(model.model_fields["type"].annotation)[0] for model in _EVENT_MODELS)


def parse_event(payload: bytes | str) -> Envelope:
    """Parse a verified body into a typed event.

    Types the reconciler does not handle come back as a bare ``Envelope`` so
    the caller can acknowledge them without looking at their object.
    """

    try:
        envelope = Envelope.model_validate_json(payload)
        if envelope.type not in KNOWN_EVENT_TYPES:
            return envelope
        return _known_event.validate_json(payload)
    except ValidationError as exc:
        raise EventParseError(str(exc)) from exc
