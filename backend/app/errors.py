from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status


class AuthError(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class MissingToken(AuthError):
    def __init__(self):
        super().__init__("No token provided")


class InvalidOrExpiredToken(AuthError):
    def __init__(self):
        super().__init__("Invalid or expired token")


class InvalidCredentials(AuthError):
    def __init__(self):
        super().__init__("Invalid credentials")


class ShopifyValidationError(HTTPException):
    """Business-rule rejection reported by Shopify as `userErrors`."""

    def __init__(self, user_errors: List[Dict[str, Any]]):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=list(user_errors))
        self.user_errors = list(user_errors)


class PreconditionFailed(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class NoOpenFulfillmentOrder(HTTPException):
    def __init__(self, detail: str = "No open fulfillment orders found"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class NotFound(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class UpstreamError(HTTPException):
    """Shopify call failed; `data` holds any partial result sent with GraphQL errors."""

    def __init__(self, detail: str, data: Optional[Dict[str, Any]] = None):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)
        self.data = data
