"""
Orders API Endpoints

Signed storefront endpoints: payment intent creation, provisional order
creation right after client-side confirmation, order lookup and invoices.

Every route depends on require_public_api_key (x-api-key, x-timestamp,
x-nonce, x-signature).
"""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from typing import Dict, Any
import logging

from ..container import ServiceContainer
from ..exceptions import GatewayError, NotFoundError, PendingError, ProductNotFoundError
from ..models.orders import CreatePaymentIntentRequest, CreateProvisionalOrderRequest
from ..services.order_lifecycle import mask_identifier
from .deps import get_services, require_public_api_key

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_public_api_key)])


@router.post("/create-payment-intent")
async def create_payment_intent_endpoint(
    body: CreatePaymentIntentRequest,
    services: ServiceContainer = Depends(get_services)
) -> Dict[str, Any]:
    """
    Create a gateway payment intent for a catalog product.

    Request Body:
        {
            "productId": int,
            "quantity": int (default 1),
            "customerInfo": {...} (optional)
        }

    Returns:
        {
            "clientSecret": str,
            "paymentReference": str,
            "amount": int,  # minor units
            "currency": str
        }

    Errors:
        404 product not found, 502 gateway failure
    """
    product = await services.store.get_product(body.product_id)
    if product is None:
        raise ProductNotFoundError(body.product_id)

    amount = product.price * body.quantity
    currency = (product.currency or "usd").lower()

    metadata = {
        "productId": str(product.id),
        "quantity": str(body.quantity),
        "productName": product.name,
        "productDescription": product.description or "",
        "currency": currency,
    }
    customer = body.customer_info
    if customer:
        for key, value in (
            ("customerId", customer.customer_id),
            ("customerEmail", customer.customer_email),
            ("customerName", customer.customer_name),
            ("customerPhone", customer.customer_phone),
        ):
            if value:
                metadata[key] = value

    intent = await services.gateway.create_payment_intent(
        amount=amount,
        currency=currency,
        metadata=metadata,
        receipt_email=customer.customer_email if customer else None,
        description=f"Purchase of {product.name}"
    )
    logger.info(f"Payment intent {mask_identifier(intent.id)} created for product {product.id} x{body.quantity}")

    return {
        "clientSecret": intent.client_secret,
        "paymentReference": intent.id,
        "amount": amount,
        "currency": currency,
    }


@router.post("/create-provisional-order")
async def create_provisional_order_endpoint(
    body: CreateProvisionalOrderRequest,
    services: ServiceContainer = Depends(get_services)
) -> Dict[str, Any]:
    """
    Record a purchase right after the client confirmed payment.

    Idempotent per payment reference: a repeated call returns the existing
    order with message "Order already exists".

    Returns:
        {"success": true, "orderId": int, "isProvisional": bool[, "message": str]}
    """
    order, created = await services.lifecycle.create_provisional(
        body.payment_reference,
        body.product_id,
        quantity=body.quantity,
        customer=body.customer_info
    )

    response: Dict[str, Any] = {
        "success": True,
        "orderId": order.id,
        "isProvisional": order.is_provisional,
    }
    if not created:
        response["message"] = "Order already exists"
    return response


@router.get("/orders/{payment_reference}")
async def get_order_endpoint(
    payment_reference: str,
    services: ServiceContainer = Depends(get_services)
):
    """
    Look up the order for a payment reference.

    Responses:
        200 {"order": {...}} confirmed (or otherwise final) order
        202 {"order": {...}} order still provisional
        202 gateway reports success but the order row does not exist yet
        400 gateway reports the payment incomplete or unsuccessful
        404 no order and the gateway does not know the reference
    """
    details = await services.store.get_order_details(payment_reference)
    if details is not None:
        body = {"order": details.to_response()}
        if details.order.is_provisional:
            body["message"] = "Order is awaiting payment confirmation"
            return JSONResponse(status_code=202, content=body)
        return body

    try:
        intent = await services.gateway.retrieve_payment_intent(payment_reference)
    except GatewayError as e:
        logger.info(f"Payment {mask_identifier(payment_reference)} unknown to gateway: {e.message}")
        raise NotFoundError("Order not found", {"payment_reference": payment_reference})

    if intent.succeeded:
        raise PendingError(
            "Order is being processed. Please try again in a few moments.",
            "processing"
        )
    if intent.status in ("requires_payment_method", "requires_confirmation"):
        raise PendingError("Payment not completed yet.", "pending", status_code=400)
    raise PendingError("Payment was not successful.", intent.status, status_code=400)


@router.get("/invoices/{payment_reference}")
async def get_invoice_endpoint(
    payment_reference: str,
    services: ServiceContainer = Depends(get_services)
) -> Dict[str, Any]:
    """
    Invoice (preferred) or charge receipt link for a payment.

    Returns:
        {"downloadUrl": str|null, "invoiceId"?, "invoiceNumber"?, "chargeId"?, "message"?}
    """
    try:
        receipt = await services.gateway.retrieve_receipt(payment_reference)
    except GatewayError as e:
        if e.not_found:
            raise NotFoundError("Payment not found", {"payment_reference": payment_reference})
        raise

    response: Dict[str, Any] = {"downloadUrl": receipt.download_url}
    for key, value in (
        ("invoiceId", receipt.invoice_id),
        ("invoiceNumber", receipt.invoice_number),
        ("chargeId", receipt.charge_id),
        ("message", receipt.message),
    ):
        if value is not None:
            response[key] = value
    return response
