"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ValidationError(DomainException):
    """Malformed input: bad period, non-positive amount, amount over balance"""

    pass


class AmountExceedsBalance(ValidationError):
    """Payment amount is larger than what is still owed on the bill"""

    def __init__(self, amount, remaining_balance):
        self.amount = amount
        self.remaining_balance = remaining_balance
        super().__init__(f"Payment of {amount} exceeds remaining balance of {remaining_balance}")


class BillAlreadySettledError(ValidationError):
    """Bill is already paid and accepts no further payments"""

    pass


class OutstandingBillsError(ValidationError):
    """Tenant still has unpaid or partial bills"""

    def __init__(self, tenant_id, bill_count: int):
        self.tenant_id = tenant_id
        self.bill_count = bill_count
        super().__init__(f"Tenant {tenant_id} has {bill_count} outstanding bill(s)")


class NotFound(DomainException):
    """Bill, tenant, room or deposit does not exist"""

    pass


class InsufficientDeposit(DomainException):
    """Deposit-funded amount exceeds the deposit's remaining balance"""

    def __init__(self, kind: str, requested, available):
        self.kind = kind
        self.requested = requested
        self.available = available
        super().__init__(f"Requested {requested} from {kind} deposit but only {available} remains")


class TransactionConflict(DomainException):
    """Store reported a lock or serialization failure; safe to retry the whole operation"""

    pass


class ArchivalInvariantViolation(DomainException):
    """Attempted to archive a bill that is not paid, or a tenant that still owes money"""

    pass


class InvalidStatusTransition(DomainException):
    """Bill status would move backwards"""

    pass
