"""Payment error taxonomy shared by gateways, the store, and the orchestrator."""

from typing import Optional


class PaymentError(Exception):
    pass


class ValidationError(PaymentError):
    def __init__(self, message: str, errors: Optional[list[str]] = None):
        self.errors = errors or [message]
        super().__init__(message)


class DuplicateReference(PaymentError):
    def __init__(self, field: str, value: str):
        self.field = field
        self.value = value
        super().__init__(f"Duplicate {field}: {value}")


class NotFound(PaymentError):
    def __init__(self, entity: str, ref: str):
        self.entity = entity
        self.ref = ref
        super().__init__(f"{entity} {ref} not found")


class ProviderError(PaymentError):
    def __init__(self, provider: str, detail: str, status_code: Optional[int] = None):
        self.provider = provider
        self.detail = detail
        self.status_code = status_code
        super().__init__(f"Provider {provider} error: {detail}")


class ProviderRejected(ProviderError):
    """The gateway refused the request; retrying the same request will not help."""


class ProviderUnavailable(ProviderError):
    """Network failure, timeout, 5xx or open circuit; the caller may retry."""


class SignatureInvalid(PaymentError):
    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"Invalid {provider} webhook signature")


class IllegalTransition(PaymentError):
    def __init__(self, entity_type: str, current: str, target: str):
        self.entity_type = entity_type
        self.current = current
        self.target = target
        super().__init__(f"Invalid {entity_type} transition: {current} -> {target}")


class PersistenceFailure(PaymentError):
    """A store write failed after the gateway may already hold the payment."""

    def __init__(self, transaction_id: str, provider: str, detail: str):
        self.transaction_id = transaction_id
        self.provider = provider
        self.detail = detail
        super().__init__(
            f"Failed to persist transaction {transaction_id} after {provider} accepted it: {detail}"
        )
