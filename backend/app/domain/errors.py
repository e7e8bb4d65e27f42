class DomainError(Exception):
    """Base class for faults that are not policy outcomes."""


class EquipmentNotFoundError(DomainError):
    pass


class ReservationNotFoundError(DomainError):
    pass


class VersionConflictError(DomainError):
    pass


class CancelNotAllowedError(DomainError):
    pass
