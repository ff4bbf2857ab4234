from .sydney_time import APP_TZ, SydneyTime
from .adherence import Adherence
from .form_parsing import FormParsing, MAX_REPS, MAX_DURATION_SEC, MAX_WEIGHT_KG

__all__ = [
    "APP_TZ",
    "SydneyTime",
    "Adherence",
    "FormParsing",
    "MAX_REPS",
    "MAX_DURATION_SEC",
    "MAX_WEIGHT_KG",
]
