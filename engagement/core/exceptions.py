"""Engine error taxonomy.

Only ``DataUnavailable`` ever reaches a caller. The other kinds are raised
and recovered inside the engine (or used as log context) and never surface
as failures of a public operation.
"""


class EngagementError(Exception):
    """Base class for engine errors."""

    retryable: bool = False

    def __init__(self, detail: str = "Engagement engine error"):
        super().__init__(detail)
        self.detail = detail


class DataUnavailable(EngagementError):
    """The activity store could not return data for a student."""

    retryable = True

    def __init__(self, student_id: int | None = None, detail: str = "Activity data unavailable"):
        if student_id is not None:
            detail = f"{detail} for student {student_id}"
        super().__init__(detail)
        self.student_id = student_id


class UnknownCatalogReference(EngagementError):
    """An unlock row references an achievement id absent from the catalog."""

    def __init__(self, achievement_id: str):
        super().__init__(f"Achievement {achievement_id!r} is not in the catalog")
        self.achievement_id = achievement_id


class ConcurrentUnlockConflict(EngagementError):
    """The unlock row was inserted by a concurrent evaluation."""

    def __init__(self, student_id: int, achievement_id: str):
        super().__init__(f"Achievement {achievement_id!r} already unlocked for student {student_id}")
        self.student_id = student_id
        self.achievement_id = achievement_id


class InvalidWindowState(EngagementError):
    """The evaluation instant lies before a computed challenge window."""
