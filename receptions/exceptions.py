from django.core.exceptions import ValidationError


class WeightIntegrityError(ValidationError):
    """A computed weight would violate a stored-data invariant.

    Raised instead of writing; callers must surface it, never coerce it.
    """


class OverDeductionError(WeightIntegrityError):
    pass


class BatchIntegrityError(WeightIntegrityError):
    pass


class BatchStateError(ValidationError):
    pass


class LabSampleStateError(ValidationError):
    pass


class EvaluationLockedError(ValidationError):
    pass
