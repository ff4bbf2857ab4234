import math

MAX_REPS = 1000
MAX_DURATION_SEC = 4 * 60 * 60
MAX_WEIGHT_KG = 2000


class FormParsing:
    """Parse optional numeric form values where blank means "no change"."""

    @staticmethod
    def _number(value) -> float | None:
        if value is None:
            return None
        if isinstance(value, str):
            value = value.strip()
            if value == "":
                return None
        if isinstance(value, bool):
            raise ValueError("Invalid number")
        try:
            return float(value)
        except (TypeError, ValueError) as e:
            raise ValueError("Invalid number") from e

    @classmethod
    def parse_nullable_number(cls, value, max_value: float) -> float | None:
        n = cls._number(value)
        if n is None:
            return None
        if not math.isfinite(n):
            raise ValueError("Invalid number")
        if n < 0:
            raise ValueError("Negative not allowed")
        if n > max_value:
            raise ValueError("Value too large")
        return n

    @classmethod
    def parse_nullable_int(cls, value, max_value: int) -> int | None:
        n = cls._number(value)
        if n is None:
            return None
        if not math.isfinite(n) or not n.is_integer():
            raise ValueError("Invalid number")
        if n < 0:
            raise ValueError("Negative not allowed")
        if n > max_value:
            raise ValueError("Value too large")
        return int(n)

    @classmethod
    def parse_set_values(
        cls, reps=None, weight_kg=None, duration_sec=None
    ) -> tuple[int | None, float | None, int | None]:
        return (
            cls.parse_nullable_int(reps, MAX_REPS),
            cls.parse_nullable_number(weight_kg, MAX_WEIGHT_KG),
            cls.parse_nullable_int(duration_sec, MAX_DURATION_SEC),
        )
