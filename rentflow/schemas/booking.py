from datetime import date
from pydantic import BaseModel, Field
from typing import List, Optional

from rentflow.services.booking_service import AddonRequest, ReservationRequest


class AddonIn(BaseModel):
    machineId: str
    quantity: int = Field(default=1, ge=1)


class BookingCreate(BaseModel):
    machineId: str
    startDate: date
    endDate: date
    customerName: str = ""
    customerEmail: str  # plain str to allow .local and other dev domains
    customerPhone: str = ""
    deliverySelected: bool = False
    pickupSelected: bool = False
    insuranceSelected: bool = False
    operatorSelected: bool = False
    addons: List[AddonIn] = []
    siteAddressLine1: Optional[str] = None
    sitePostalCode: Optional[str] = None
    siteCity: Optional[str] = None
    billingIsBusiness: bool = False
    billingCompanyName: Optional[str] = None
    billingTaxId: Optional[str] = None

    def to_request(self) -> ReservationRequest:
        return ReservationRequest(
            machine_id=self.machineId,
            start_date=self.startDate,
            end_date=self.endDate,
            customer_email=self.customerEmail,
            customer_name=self.customerName,
            customer_phone=self.customerPhone,
            delivery_selected=self.deliverySelected,
            pickup_selected=self.pickupSelected,
            insurance_selected=self.insuranceSelected,
            operator_selected=self.operatorSelected,
            addons=[AddonRequest(machine_id=a.machineId, quantity=a.quantity) for a in self.addons],
            site_address_line1=self.siteAddressLine1,
            site_postal_code=self.sitePostalCode,
            site_city=self.siteCity,
            billing_is_business=self.billingIsBusiness,
            billing_company_name=self.billingCompanyName,
            billing_tax_id=self.billingTaxId,
        )


class TotalsOut(BaseModel):
    rentalDays: int
    subtotalCents: int
    deliveryCents: int = 0
    pickupCents: int = 0
    insuranceCents: int = 0
    operatorCents: int = 0
    discountCents: int = 0
    totalCents: int
    pending: List[str] = []
    discountPercentage: Optional[str] = None


class BookingOut(BaseModel):
    bookingId: str
    bookingRef: str
    status: str
    holdExpiresAt: Optional[str] = None
    totals: TotalsOut
    checkoutUrl: Optional[str] = None


class BookingStatusOut(BaseModel):
    bookingId: str
    bookingRef: str
    status: str
    paid: bool
    startDate: date
    endDate: date
    totalCents: Optional[int] = None
    invoiceNumber: Optional[str] = None
    balanceAuthorized: bool = False


class DiscountOut(BaseModel):
    discountPercentage: float = 0
    companyName: Optional[str] = None
