from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class CheckoutStartRequest(BaseModel):
    customer_id: str = Field(..., min_length=1)


class ShippingSelectRequest(BaseModel):
    address_id: str = Field(..., min_length=1)


class StkCallback(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    merchant_request_id: str | None = Field(default=None, alias="MerchantRequestID")
    checkout_request_id: str = Field(..., alias="CheckoutRequestID")
    result_code: int = Field(..., alias="ResultCode")
    result_desc: str | None = Field(default=None, alias="ResultDesc")


class StkCallbackBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    stk_callback: StkCallback = Field(..., alias="stkCallback")


class PaymentCallbackRequest(BaseModel):
    """Provider push notification, in the Daraja STK callback shape."""

    model_config = ConfigDict(populate_by_name=True)

    body: StkCallbackBody = Field(..., alias="Body")


class CallbackAck(BaseModel):
    ResultCode: int = 0
    ResultDesc: str = "Accepted"
    outcome: str
