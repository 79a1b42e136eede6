from __future__ import annotations


class VoucherValidationError(ValueError):
    """A voucher request was rejected before reaching the tax authority."""


class ManualTotalsError(VoucherValidationError):
    """Operator-entered totals cannot be used as given."""


class VoucherAuthorizationError(RuntimeError):
    """The tax authority did not authorize the voucher."""


class DuplicateVoucherError(ValueError):
    """An authorized voucher number is already stored for the same agency, point of sale and type."""


class VoucherNotFoundError(LookupError):
    """The booking, payer or voucher a request refers to does not exist for the agency."""


class VoucherStoreError(RuntimeError):
    """An authorized voucher could not be persisted; it exists at AFIP but not in the back-office."""


class IssuanceBusyError(ValueError):
    """Another voucher issuance for the same agency holds the issuance lock."""
