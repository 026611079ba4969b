from __future__ import annotations


class ReservationError(Exception): ...

# decision errors (synchronous, never retried)
class AlreadyReserved(ReservationError): ...
class NotReserved(ReservationError): ...
class GatheringNotFound(ReservationError): ...
class InvalidCapacity(ReservationError): ...
class CapacityBelowGoing(ReservationError): ...

# store errors
class StoreUnavailable(ReservationError):
    """Read or write against the reservation store failed; the whole operation may be retried."""


class StaleSnapshot(ReservationError):
    """The store saw a conflicting concurrent write inside an exclusive section.

    Points at a locking bug; retried once by the coordinator, then surfaced.
    """
