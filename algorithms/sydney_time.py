import datetime
from zoneinfo import ZoneInfo

APP_TZ = "Australia/Sydney"


class SydneyTime:
    """Conversions between wall-clock times in a named zone and UTC instants."""

    @staticmethod
    def zone(timezone: str = APP_TZ) -> ZoneInfo:
        return ZoneInfo(timezone)

    @staticmethod
    def parse_iso(value: str) -> datetime.datetime:
        dt = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=datetime.timezone.utc)
        return dt

    @staticmethod
    def to_iso(dt: datetime.datetime) -> str:
        utc = dt.astimezone(datetime.timezone.utc)
        return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"

    @staticmethod
    def now_iso() -> str:
        return SydneyTime.to_iso(datetime.datetime.now(datetime.timezone.utc))

    @staticmethod
    def _offset(instant: datetime.datetime, zone: ZoneInfo) -> datetime.timedelta:
        return instant.astimezone(zone).utcoffset() or datetime.timedelta(0)

    @classmethod
    def local_to_utc_iso(
        cls, date_ymd: str, time_hm: str, timezone: str = APP_TZ
    ) -> str:
        """Convert ``YYYY-MM-DD`` + ``HH:mm`` in ``timezone`` to a UTC ISO string.

        The offset is resolved in two passes: first at the naive instant, then
        again at the corrected instant, so times next to a DST transition land
        on the offset that is actually in force.
        """
        try:
            year, month, day = (int(p) for p in date_ymd.split("-"))
            hour, minute = (int(p) for p in time_hm.split(":")[:2])
            naive_utc = datetime.datetime(
                year, month, day, hour, minute, tzinfo=datetime.timezone.utc
            )
        except ValueError as e:
            raise ValueError(f"invalid local date/time: {date_ymd} {time_hm}") from e
        zone = cls.zone(timezone)
        off1 = cls._offset(naive_utc, zone)
        utc = naive_utc - off1
        off2 = cls._offset(utc, zone)
        if off2 != off1:
            utc = naive_utc - off2
        return cls.to_iso(utc)

    @classmethod
    def to_date_ymd(cls, value_iso: str, timezone: str = APP_TZ) -> str:
        return cls.parse_iso(value_iso).astimezone(cls.zone(timezone)).strftime("%Y-%m-%d")

    @classmethod
    def to_time_local(cls, value_iso: str, timezone: str = APP_TZ) -> str:
        return cls.parse_iso(value_iso).astimezone(cls.zone(timezone)).strftime("%H:%M")

    @classmethod
    def day_key(cls, instant: datetime.datetime, timezone: str = APP_TZ) -> str:
        """Calendar day of ``instant`` in ``timezone`` as ``YYYY-MM-DD``."""
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=datetime.timezone.utc)
        return instant.astimezone(cls.zone(timezone)).strftime("%Y-%m-%d")

    @classmethod
    def today(cls, timezone: str = APP_TZ) -> str:
        return cls.day_key(datetime.datetime.now(datetime.timezone.utc), timezone)

    @staticmethod
    def month_bounds(year: int, month: int) -> tuple[str, str]:
        """First and last day keys of a calendar month (``month`` is 1-based)."""
        first = datetime.date(year, month, 1)
        if month == 12:
            nxt = datetime.date(year + 1, 1, 1)
        else:
            nxt = datetime.date(year, month + 1, 1)
        last = nxt - datetime.timedelta(days=1)
        return first.isoformat(), last.isoformat()

    @classmethod
    def week_start(cls, instant: datetime.datetime, timezone: str = APP_TZ) -> datetime.date:
        """Monday of the week containing ``instant`` in ``timezone``."""
        local = datetime.date.fromisoformat(cls.day_key(instant, timezone))
        return local - datetime.timedelta(days=local.weekday())

    @staticmethod
    def validate_ymd(value: str) -> str:
        try:
            datetime.date.fromisoformat(value)
        except (TypeError, ValueError) as e:
            raise ValueError("day must be YYYY-MM-DD") from e
        if len(value) != 10:
            raise ValueError("day must be YYYY-MM-DD")
        return value
