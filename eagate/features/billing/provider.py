"""
Billing provider protocol.

Defines the interface for billing providers (Stripe, etc.).
This allows swapping providers without changing ingestion logic.
"""
from typing import Protocol, Dict, Any, Optional


class BillingProvider(Protocol):
    """
    Protocol for billing providers.

    Implementations must handle:
    - Checkout session creation
    - Webhook signature verification
    """

    def create_checkout_session(
        self,
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
        client_reference_id: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None
    ) -> str:
        """
        Create a hosted checkout session.

        Args:
            success_url: URL to redirect on success
            cancel_url: URL to redirect on cancellation
            customer_email: Prefilled email; becomes the entitlement key
            client_reference_id: Anonymous device token to link on completion
            metadata: Optional metadata to attach

        Returns:
            Checkout session URL

        Raises:
            BillingProviderError: If session creation fails
        """
        ...

    def verify_webhook(self, body: bytes, signature_header: Optional[str]) -> Dict[str, Any]:
        """
        Verify webhook signature and decode the event body.

        Args:
            body: Raw webhook body (exact bytes that were signed)
            signature_header: Provider signature header value

        Returns:
            Decoded event as a plain dict

        Raises:
            SignatureInvalidError: Signature missing or does not match
            MalformedEventError: Signed body is not a JSON object
        """
        ...


class BillingProviderError(Exception):
    """Base exception for billing provider errors."""
    pass
