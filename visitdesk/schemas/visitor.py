from pydantic import BaseModel


class VisitorCreate(BaseModel):
    visitor_name: str | None = None
    mobile: str | None = None
    host_employee: str | None = None
    host_email: str | None = None
    purpose: str | None = None
    photo_base64: str | None = None


class VisitorUpdate(BaseModel):
    visitor_name: str | None = None
    mobile: str | None = None
    host_employee: str | None = None
    host_email: str | None = None
    purpose: str | None = None


class CheckoutResponse(BaseModel):
    success: bool
    message: str
    checkoutTime: str
    visitor: dict
