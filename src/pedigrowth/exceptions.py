"""
Exceptions raised by the growth assessment engine.

Expected data gaps (missing weight, no reference row for an age) are never
raised; they come back as result objects. Only invariant violations and
caller errors are exceptions.
"""


class GrowthEngineError(Exception):
    """Base class for growth engine errors."""


class InvalidLMSParametersError(GrowthEngineError, ValueError):
    """Raised when an LMS row has M <= 0 or S <= 0."""

    def __init__(self, l: float, m: float, s: float):
        self.l = l
        self.m = m
        self.s = s
        super().__init__(f"Invalid LMS parameters: L={l}, M={m}, S={s} (M and S must be positive)")


class PatientNotFoundError(GrowthEngineError, LookupError):
    """Raised when the patient collaborator has no record for an id."""

    def __init__(self, patient_id: str):
        self.patient_id = patient_id
        super().__init__(f"Patient not found: {patient_id}")


class ReferenceDataError(GrowthEngineError, ValueError):
    """Raised for malformed reference datasets or a missing chart configuration."""
