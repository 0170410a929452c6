"""
Negotiation domain models.

WHAT: Turn context, stored conversation state, decisions and round limits
WHY: Consistent typing between the selector, interpreter, store and orchestrator
HOW: Pydantic v2 models; stored messages and decisions are frozen
"""

from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Literal, Any
from datetime import datetime, timedelta
from math import floor
from uuid import uuid4


Urgency = Literal["low", "medium", "high"]
Personality = Literal["friendly", "professional", "firm", "flexible"]
Action = Literal["accept", "reject", "counter", "continue"]
OfferSource = Literal["extracted", "calculated", "fallback", "accepted"]
Phase = Literal["opening", "exploration", "active_negotiation", "closing"]
LifecycleStatus = Literal["opening", "exploring", "bargaining", "closing", "accepted", "rejected", "expired"]


class NegotiationContext(BaseModel):
    """Everything the selector and interpreter need for a single turn."""

    product_title: str = Field(min_length=1)
    base_price: float = Field(gt=0.0)
    min_price: float = Field(gt=0.0)
    current_offer: float = Field(gt=0.0)
    round: int = Field(ge=1)
    max_rounds: int = Field(ge=1)
    urgency: Urgency = "medium"
    personality: Personality = "professional"
    category: str = "general"
    user_message: str = Field(default="", max_length=1000)

    # Optional listing signals
    condition: str = ""
    days_on_market: int | None = Field(default=None, ge=0)
    view_count: int | None = Field(default=None, ge=0)
    conversation_history: str = ""

    @model_validator(mode="after")
    def validate_price_bounds(self) -> "NegotiationContext":
        """Ensure min_price <= base_price."""
        if self.min_price > self.base_price:
            raise ValueError("min_price must be <= base_price")
        return self

    @property
    def is_final_round(self) -> bool:
        return self.round >= self.max_rounds


class MessageOffer(BaseModel):
    """Price attached to a message."""

    model_config = ConfigDict(frozen=True)

    amount: float = Field(gt=0.0)
    currency: str = "USD"


class Message(BaseModel):
    """A stored conversation message. Never mutated after append."""

    model_config = ConfigDict(frozen=True)

    message_id: str = Field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = Field(default_factory=datetime.now)
    sender: Literal["buyer", "agent"]
    content: str = Field(max_length=5000)
    round: int = Field(default=0, ge=0)
    branch: str = "main"
    offer: MessageOffer | None = None

    # Optional classification
    sentiment: float | None = Field(default=None, ge=0.0, le=1.0)
    strategy: str | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    action: Action | None = None


class OfferRecord(BaseModel):
    """One entry of the offer history."""

    amount: float = Field(gt=0.0)
    round: int = Field(ge=0)
    sender: Literal["buyer", "agent"]
    timestamp: datetime = Field(default_factory=datetime.now)


class Branch(BaseModel):
    """Named sub-history. Parent is referenced by name, never by object."""

    name: str = Field(min_length=1, max_length=100)
    parent: str | None = None
    branch_point: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=datetime.now)
    messages: list[Message] = Field(default_factory=list)
    offers: list[OfferRecord] = Field(default_factory=list)


class ProductInfo(BaseModel):
    """Listing data fixed at negotiation start."""

    title: str
    base_price: float = Field(gt=0.0)
    min_price: float = Field(gt=0.0)
    category: str = "general"
    condition: str = ""
    days_on_market: int | None = None
    view_count: int | None = None


class NegotiationSettings(BaseModel):
    """Seller-side knobs for one negotiation."""

    target_price: float | None = None
    urgency: Urgency = "medium"
    personality: Personality = "professional"


class PredictedOutcome(BaseModel):
    outcome: Literal["likely_success", "possible_success", "uncertain", "likely_failure"] = "uncertain"
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    factors: list[str] = Field(default_factory=list)


class AnalyticsBlock(BaseModel):
    """Derived analytics, recomputed on every append."""

    success_probability: float = Field(default=0.5, ge=0.0, le=1.0)
    phase: Phase = "opening"
    price_flexibility: float = 0.0  # percent
    engagement_score: float = Field(default=0.0, ge=0.0, le=1.0)
    momentum: float = 0.0  # messages per hour
    sentiment_trend: Literal["improving", "declining", "stable"] = "stable"
    average_response_time: float = 0.0  # seconds
    predicted_outcome: PredictedOutcome = Field(default_factory=PredictedOutcome)
    total_rounds: int = 0
    negotiation_style: Literal["collaborative", "competitive", "balanced"] = "balanced"
    updated_at: datetime = Field(default_factory=datetime.now)


class NegotiationState(BaseModel):
    """
    Complete conversation state of one negotiation.

    Mutable, single writer. Branches live in an arena keyed by name;
    `messages` and `offers` expose the lineage of the active branch.
    """

    negotiation_id: str
    created_at: datetime = Field(default_factory=datetime.now)
    last_activity: datetime = Field(default_factory=datetime.now)
    branches: dict[str, Branch] = Field(default_factory=lambda: {"main": Branch(name="main")})
    active_branch: str = "main"
    current_round: int = Field(default=0, ge=0)
    max_rounds: int = Field(default=10, ge=1)
    product: ProductInfo
    settings: NegotiationSettings = Field(default_factory=NegotiationSettings)
    status: Literal["active", "accepted", "rejected", "expired"] = "active"
    analytics: AnalyticsBlock = Field(default_factory=AnalyticsBlock)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def lineage_messages(self, branch_name: str) -> list[Message]:
        """Ancestor messages up to each branch point, followed by the branch's own."""
        branch = self.branches[branch_name]
        if branch.parent is None:
            return list(branch.messages)
        inherited = [m for m in self.lineage_messages(branch.parent) if m.round <= branch.branch_point]
        return inherited + branch.messages

    def lineage_offers(self, branch_name: str) -> list[OfferRecord]:
        branch = self.branches[branch_name]
        if branch.parent is None:
            return list(branch.offers)
        inherited = [o for o in self.lineage_offers(branch.parent) if o.round <= branch.branch_point]
        return inherited + branch.offers

    @property
    def messages(self) -> list[Message]:
        return self.lineage_messages(self.active_branch)

    @property
    def offers(self) -> list[OfferRecord]:
        return self.lineage_offers(self.active_branch)

    @property
    def current_offer(self) -> float | None:
        """Most recent buyer offer on the active lineage."""
        for offer in reversed(self.offers):
            if offer.sender == "buyer":
                return offer.amount
        return None


class DecisionOffer(BaseModel):
    model_config = ConfigDict(frozen=True)

    amount: float
    final: bool = False
    source: OfferSource
    formatted: str = ""


class DecisionMetadata(BaseModel):
    """Processing metadata attached to every decision."""

    model_config = ConfigDict(frozen=True)

    model: str = "unknown"
    prompt_id: str = Field(default_factory=lambda: f"prompt_{uuid4().hex[:12]}")
    request_id: str = Field(default_factory=lambda: f"req_{uuid4().hex[:12]}")
    processing_time_ms: float = 0.0
    validation_status: Literal["valid", "invalid", "error"] = "valid"
    validation_errors: list[str] = Field(default_factory=list)
    business_errors: list[str] = Field(default_factory=list)
    is_fallback: bool = False
    low_confidence: bool = False
    error_codes: list[str] = Field(default_factory=list)
    scenario: str | None = None
    original_response: str = ""
    round: int | None = None
    max_rounds: int | None = None
    progress: int | None = None  # percent of max rounds
    timestamp: datetime = Field(default_factory=datetime.now)


class StructuredDecision(BaseModel):
    """
    Validated, machine-usable reading of a model reply.

    Deliberately lenient so a flawed decision can still be returned with its
    errors attached; strict checking happens against DecisionShape.
    """

    model_config = ConfigDict(frozen=True)

    content: str
    action: Action
    offer: DecisionOffer | None = None
    confidence: float
    reasoning: str = ""
    metadata: DecisionMetadata = Field(default_factory=DecisionMetadata)

    def with_metadata(self, **updates) -> "StructuredDecision":
        """Copy with metadata fields replaced."""
        return self.model_copy(update={"metadata": self.metadata.model_copy(update=updates)})


class OfferShape(BaseModel):
    amount: float = Field(gt=0.0)
    final: bool
    source: OfferSource


class MetadataShape(BaseModel):
    model_config = ConfigDict(extra="ignore")

    model: str = Field(min_length=1)
    prompt_id: str = Field(min_length=1)
    processing_time_ms: float = Field(ge=0.0)
    validation_status: Literal["valid", "invalid", "error"]


class DecisionShape(BaseModel):
    """Strict structural contract a StructuredDecision is checked against."""

    model_config = ConfigDict(extra="ignore")

    content: str = Field(min_length=1, max_length=500)
    action: Action
    offer: OfferShape | None = None
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = Field(default="", max_length=200)
    metadata: MetadataShape


class RoundLimits(BaseModel):
    """Round and duration policy for one negotiation."""

    negotiation_id: str
    max_rounds: int = Field(ge=1)
    current_round: int = Field(default=0, ge=0)
    warning_fraction: float = Field(default=0.8, gt=0.0, le=1.0)
    escalation_fraction: float = Field(default=0.9, gt=0.0, le=1.0)
    max_duration: timedelta = timedelta(hours=24)
    warning_duration: timedelta = timedelta(hours=20)
    allow_extension: bool = True
    max_extensions: int = Field(default=2, ge=0)
    extensions_used: int = Field(default=0, ge=0)
    started_at: datetime = Field(default_factory=datetime.now)
    status: LifecycleStatus = "opening"

    @property
    def warning_round(self) -> int:
        return floor(self.max_rounds * self.warning_fraction)

    @property
    def escalation_round(self) -> int:
        return floor(self.max_rounds * self.escalation_fraction)

    @property
    def remaining_rounds(self) -> int:
        return max(0, self.max_rounds - self.current_round)

    @property
    def is_terminal(self) -> bool:
        return self.status in ("accepted", "rejected", "expired")
