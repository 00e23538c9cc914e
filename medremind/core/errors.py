class MedRemindError(Exception):
    """Base class for errors raised by the adherence engine."""


class ScheduleValidationError(MedRemindError, ValueError):
    """A medication schedule breaks one of its structural invariants."""


class NotFoundError(MedRemindError):
    """Unknown id, or an id that belongs to another user."""


class RelationshipError(MedRemindError):
    """A caretaker/patient link operation cannot be applied."""
