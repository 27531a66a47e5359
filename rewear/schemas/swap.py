from pydantic import BaseModel, Field, computed_field, field_validator
from typing import Optional, List, Dict, Any, Literal, Union, Annotated
from datetime import datetime
from enum import Enum

class SwapStatus(str, Enum):
    PENDING = "pending"                  # Initial request sent
    ACCEPTED = "accepted"                # Provider accepted the swap
    DECLINED = "declined"                # Provider declined
    METHOD_SELECTED = "method_selected"  # Exchange method chosen
    ITEMS_PREPARED = "items_prepared"    # Both parties prepared items
    IN_TRANSIT = "in_transit"            # Items being exchanged
    DELIVERED = "delivered"              # Items delivered
    CONFIRMED = "confirmed"              # Both parties confirmed receipt
    COMPLETED = "completed"              # Swap fully completed with points awarded
    DISPUTED = "disputed"                # Issue raised by either party
    CANCELLED = "cancelled"              # Swap cancelled

class Role(str, Enum):
    REQUESTER = "requester"
    PROVIDER = "provider"

    @property
    def other(self) -> "Role":
        return Role.PROVIDER if self is Role.REQUESTER else Role.REQUESTER

class SwapResponseAction(str, Enum):
    ACCEPT = "accept"
    DECLINE = "decline"

class ShippingService(str, Enum):
    USPS = "usps"
    UPS = "ups"
    FEDEX = "fedex"
    DHL = "dhl"
    OTHER = "other"

# Participants

class ItemSnapshot(BaseModel):
    item_id: str
    title: str
    images: List[str] = []
    estimated_value: float = Field(0, ge=0)
    carbon_saving: float = Field(0, ge=0, description="kg CO2e avoided by reusing the item")

class Party(BaseModel):
    user_id: str
    username: str
    item: ItemSnapshot

# Exchange methods

class Coordinates(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)

class Place(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    address: str = Field(..., min_length=3, max_length=300)
    coordinates: Optional[Coordinates] = None

class DropOffPoint(Place):
    operating_hours: str = Field(..., min_length=1, max_length=200)
    contact_info: Optional[str] = Field(None, max_length=200)

class PostalAddress(BaseModel):
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: Optional[str] = None
    zip_code: str = Field(..., min_length=1)
    country: str = "US"

class TrackingNumbers(BaseModel):
    requester_to_provider: Optional[str] = None
    provider_to_requester: Optional[str] = None

class EstimatedDelivery(BaseModel):
    requester_item: Optional[datetime] = None
    provider_item: Optional[datetime] = None

class ShippingDetails(BaseModel):
    requester_address: PostalAddress
    provider_address: PostalAddress
    tracking_numbers: TrackingNumbers = Field(default_factory=TrackingNumbers)
    shipping_service: ShippingService = ShippingService.USPS
    estimated_delivery: EstimatedDelivery = Field(default_factory=EstimatedDelivery)

class InPersonMethod(BaseModel):
    type: Literal["in_person"] = "in_person"
    meetup_location: Place
    scheduled_time: datetime

class PostalMethod(BaseModel):
    type: Literal["postal"] = "postal"
    shipping_details: ShippingDetails

class DropOffMethod(BaseModel):
    type: Literal["drop_off_point"] = "drop_off_point"
    drop_off_point: DropOffPoint
    scheduled_time: Optional[datetime] = None

class EscrowMethod(BaseModel):
    type: Literal["escrow_service"] = "escrow_service"
    details: Dict[str, Any] = {}

ExchangeMethod = Annotated[
    Union[InPersonMethod, PostalMethod, DropOffMethod, EscrowMethod],
    Field(discriminator="type"),
]

# Verification

class PreparedConfirmation(BaseModel):
    confirmed: bool = False
    timestamp: Optional[datetime] = None
    notes: Optional[str] = None

class SentConfirmation(BaseModel):
    confirmed: bool = False
    timestamp: Optional[datetime] = None
    proof: Optional[str] = None

class ReceivedConfirmation(BaseModel):
    confirmed: bool = False
    timestamp: Optional[datetime] = None
    condition: Optional[str] = None

class ConfirmationSet(BaseModel):
    item_prepared: PreparedConfirmation = Field(default_factory=PreparedConfirmation)
    item_sent: SentConfirmation = Field(default_factory=SentConfirmation)
    item_received: ReceivedConfirmation = Field(default_factory=ReceivedConfirmation)
    satisfaction_rating: Optional[int] = Field(None, ge=1, le=5)

class PartyPhotos(BaseModel):
    requester_item: List[str] = []
    provider_item: List[str] = []

    def set_for(self, role: Role, photos: List[str]) -> None:
        setattr(self, f"{role.value}_item", list(photos))

class PhotoBundle(BaseModel):
    before_shipping: PartyPhotos = Field(default_factory=PartyPhotos)
    after_receiving: PartyPhotos = Field(default_factory=PartyPhotos)

class Verification(BaseModel):
    requester_confirmations: ConfirmationSet = Field(default_factory=ConfirmationSet)
    provider_confirmations: ConfirmationSet = Field(default_factory=ConfirmationSet)
    photos: PhotoBundle = Field(default_factory=PhotoBundle)

    def confirmations_for(self, role: Role) -> ConfirmationSet:
        return getattr(self, f"{role.value}_confirmations")

# Points and impact

class PartyPoints(BaseModel):
    requester: float = 0
    provider: float = 0

class BonusPoints(BaseModel):
    sustainability_bonus: float = 0
    quality_bonus: float = 0
    speed_bonus: float = 0

class PointsCalculation(BaseModel):
    base_points: PartyPoints = Field(default_factory=PartyPoints)
    bonus_points: BonusPoints = Field(default_factory=BonusPoints)
    total_points: PartyPoints = Field(default_factory=PartyPoints)
    points_awarded: bool = False

class EnvironmentalImpact(BaseModel):
    total_carbon_saved: float = 0
    water_saved: float = 0    # liters
    waste_reduced: float = 0  # kg
    calculated_at: Optional[datetime] = None

class TimelineEntry(BaseModel):
    event: str
    timestamp: datetime
    performed_by: Optional[str] = None
    details: str = ""
    status: Optional[SwapStatus] = None
    automatic: bool = False

class DisputeResolution(BaseModel):
    is_disputed: bool = False
    dispute_reason: Optional[str] = None
    disputed_by: Optional[str] = None
    dispute_timestamp: Optional[datetime] = None
    evidence: List[str] = []
    resolution: Optional[str] = None

class SwapAnalytics(BaseModel):
    response_time: Optional[float] = None    # minutes to accept/decline
    completion_time: Optional[float] = None  # hours from request to completion

# Progress shown to users, keyed by status
STATUS_PROGRESS = {
    SwapStatus.PENDING: 10,
    SwapStatus.ACCEPTED: 20,
    SwapStatus.METHOD_SELECTED: 30,
    SwapStatus.ITEMS_PREPARED: 50,
    SwapStatus.IN_TRANSIT: 70,
    SwapStatus.DELIVERED: 85,
    SwapStatus.CONFIRMED: 95,
    SwapStatus.COMPLETED: 100,
    SwapStatus.DISPUTED: 40,
    SwapStatus.CANCELLED: 0,
    SwapStatus.DECLINED: 0,
}

class Swap(BaseModel):
    swap_id: str
    requester: Party
    provider: Party
    status: SwapStatus = SwapStatus.PENDING
    message: Optional[str] = None
    exchange_method: Optional[ExchangeMethod] = None
    verification: Verification = Field(default_factory=Verification)
    points_calculation: PointsCalculation = Field(default_factory=PointsCalculation)
    environmental_impact: EnvironmentalImpact = Field(default_factory=EnvironmentalImpact)
    timeline: List[TimelineEntry] = []
    dispute_resolution: DisputeResolution = Field(default_factory=DisputeResolution)
    analytics: SwapAnalytics = Field(default_factory=SwapAnalytics)
    version: int = 0
    created_at: datetime
    updated_at: datetime

    @computed_field
    @property
    def progress_percentage(self) -> int:
        return STATUS_PROGRESS.get(self.status, 0)

    def party(self, role: Role) -> Party:
        return self.requester if role is Role.REQUESTER else self.provider

    def role_of(self, user_id: str) -> Optional[Role]:
        if user_id == self.requester.user_id:
            return Role.REQUESTER
        if user_id == self.provider.user_id:
            return Role.PROVIDER
        return None

    def last_status_change(self) -> datetime:
        for entry in reversed(self.timeline):
            if entry.status is not None:
                return entry.timestamp
        return self.created_at

# Request bodies

class SwapCreate(BaseModel):
    provider_id: str = Field(..., min_length=1)
    requested_item_id: str = Field(..., min_length=1)
    offered_item_id: Optional[str] = None
    message: Optional[str] = Field(None, max_length=500)

class SwapRespond(BaseModel):
    response: SwapResponseAction
    message: Optional[str] = Field(None, max_length=500)

class ExchangeMethodSelect(BaseModel):
    exchange_method: ExchangeMethod

class ConfirmPrepared(BaseModel):
    photos: List[str] = []
    notes: Optional[str] = Field(None, max_length=500)

class ConfirmSent(BaseModel):
    tracking_number: Optional[str] = Field(None, max_length=100)
    shipping_service: Optional[ShippingService] = None
    estimated_delivery: Optional[datetime] = None

class ConfirmReceived(BaseModel):
    condition: str = Field(..., min_length=1, max_length=200)
    satisfaction_rating: Optional[int] = Field(None, ge=1, le=5)
    photos: List[str] = []

class TrackingUpdate(BaseModel):
    message: str = Field(..., min_length=1, max_length=500)

class TrackingUpdates(BaseModel):
    tracking_updates: List[TrackingUpdate] = Field(..., min_length=1)

class SwapDispute(BaseModel):
    reason: str = Field(..., min_length=3, max_length=1000)
    evidence: List[str] = []

    @field_validator("reason")
    def validate_reason(cls, v):
        if not v.strip():
            raise ValueError("Dispute reason cannot be blank")
        return v.strip()

class SwapCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)
