"""
Availability engine: day grids, point checks and gap search over one conflict group.

Times are stored as naive UTC. Facility opening hours and peak rules are
local wall-clock values interpreted in FACILITY_TIMEZONE.
"""
from dataclasses import dataclass, field, asdict
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from flask import current_app

from models.facility import Facility
from models.manual_block import ManualBlock
from models.play_area import PlayArea
from models.pricing import PricingProfile
from models.reservation import Reservation
from services.errors import NotFound
from services.money import price_for_duration

AVAILABLE = "available"
BOOKED = "booked"
BLOCKED = "blocked"
DISABLED = "disabled"
BUFFER = "buffer"


@dataclass
class GridSlot:
    start_at: datetime
    end_at: datetime
    blocked_end_at: datetime
    duration_minutes: int
    status: str
    is_peak: bool = False
    price: int = None
    reservation_id: int = None
    block_id: int = None

    def to_dict(self) -> dict:
        out = asdict(self)
        for k in ("start_at", "end_at", "blocked_end_at"):
            out[k] = out[k].isoformat()
        return out


@dataclass
class Grid:
    conflict_group_id: str
    pricing_profile_id: int
    date: date
    slots: dict = field(default_factory=dict)  # duration -> [GridSlot]

    def to_dict(self) -> dict:
        return {
            "conflict_group_id": self.conflict_group_id,
            "pricing_profile_id": self.pricing_profile_id,
            "date": self.date.isoformat(),
            "slots": {str(d): [s.to_dict() for s in rows] for d, rows in self.slots.items()},
        }


# ---------- time helpers ----------

def facility_tz() -> ZoneInfo:
    return ZoneInfo(current_app.config.get("FACILITY_TIMEZONE", "Asia/Dhaka"))


def parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def local_to_utc(day: date, at: time, tz) -> datetime:
    local = datetime.combine(day, at).replace(tzinfo=tz)
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def utc_to_local(value: datetime, tz) -> datetime:
    return value.replace(tzinfo=timezone.utc).astimezone(tz)


def operating_window(facility: Facility, day: date, tz):
    """(open, close) in naive UTC. A closing time at or before opening means past midnight."""
    opening = parse_hhmm(facility.opening_time)
    closing = parse_hhmm(facility.closing_time)
    open_at = local_to_utc(day, opening, tz)
    close_day = day + timedelta(days=1) if closing <= opening else day
    return open_at, local_to_utc(close_day, closing, tz)


def ranges_overlap(start1, end1, start2, end2) -> bool:
    # half-open [start, end)
    return start1 < end2 and end1 > start2


def respects_lead_time(start_at: datetime, lead_minutes: int, now: datetime) -> bool:
    return start_at >= now + timedelta(minutes=lead_minutes or 0)


def is_peak(start_at: datetime, end_at: datetime, rules, tz) -> bool:
    local_start = utc_to_local(start_at, tz)
    local_end = utc_to_local(end_at, tz)
    days = {local_start.date(), local_end.date()}
    for rule in rules:
        if not rule.is_active:
            continue
        for d in days:
            if d.weekday() != rule.day_of_week:
                continue
            rule_start = datetime.combine(d, parse_hhmm(rule.start_time), tz)
            rule_end = datetime.combine(d, parse_hhmm(rule.end_time), tz)
            if rule_end <= rule_start:
                rule_end += timedelta(days=1)
            if ranges_overlap(local_start, local_end, rule_start, rule_end):
                return True
    return False


def quote_price(profile: PricingProfile, duration_minutes: int, peak: bool):
    if peak:
        price = price_for_duration(profile.peak_duration_prices, duration_minutes)
        if price is not None:
            return price
    return price_for_duration(profile.duration_prices, duration_minutes)


# ---------- occupancy ----------

def _occupants(conflict_group_id: str, window_start: datetime, window_end: datetime):
    reservations = (
        Reservation.occupying(conflict_group_id)
        .filter(Reservation.start_at < window_end, Reservation.blocked_end_at > window_start)
        .order_by(Reservation.start_at.asc())
        .all()
    )
    blocks = (
        ManualBlock.active(conflict_group_id)
        .filter(ManualBlock.start_at < window_end, ManualBlock.end_at > window_start)
        .order_by(ManualBlock.start_at.asc())
        .all()
    )
    return reservations, blocks


def classify(start_at, end_at, blocked_end_at, reservations, blocks, disabled=False):
    """
    Status for one candidate slot: disabled, then booked (play time overlaps a
    reservation's play time), blocked (manual block), buffer (overlap only
    through a buffer), else available.
    """
    if disabled:
        return DISABLED, None, None
    for r in reservations:
        if ranges_overlap(start_at, end_at, r.start_at, r.end_at):
            return BOOKED, r.id, None
    for b in blocks:
        if ranges_overlap(start_at, blocked_end_at, b.start_at, b.end_at):
            return BLOCKED, None, b.id
    for r in reservations:
        if ranges_overlap(start_at, blocked_end_at, r.start_at, r.blocked_end_at):
            return BUFFER, r.id, None
    return AVAILABLE, None, None


def compute_grid(conflict_group_id: str, pricing_profile_id: int, day: date, now: datetime = None) -> Grid:
    now = now or datetime.utcnow()
    profile = PricingProfile.query.get(pricing_profile_id)
    if not profile or profile.play_area.conflict_group_id != conflict_group_id:
        raise NotFound("Pricing profile not found", details={"pricing_profile_id": pricing_profile_id})

    facility = profile.play_area.facility
    tz = facility_tz()
    open_at, close_at = operating_window(facility, day, tz)
    buffer = timedelta(minutes=profile.buffer_minutes)
    interval = timedelta(minutes=profile.slot_interval_minutes)
    rules = list(profile.peak_rules)

    # a slot's buffer may run past closing, so look slightly beyond it
    reservations, blocks = _occupants(conflict_group_id, open_at, close_at + buffer)

    grid = Grid(conflict_group_id=conflict_group_id, pricing_profile_id=profile.id, date=day)
    for duration in sorted(int(d) for d in profile.allowed_durations or []):
        length = timedelta(minutes=duration)
        rows = []
        start = open_at
        while start < close_at:
            end = start + length
            blocked_end = end + buffer
            disabled = end > close_at or not respects_lead_time(start, profile.min_lead_time_minutes, now)
            status, reservation_id, block_id = classify(start, end, blocked_end, reservations, blocks, disabled)
            peak = is_peak(start, end, rules, tz)
            rows.append(GridSlot(
                start_at=start,
                end_at=end,
                blocked_end_at=blocked_end,
                duration_minutes=duration,
                status=status,
                is_peak=peak,
                price=quote_price(profile, duration, peak),
                reservation_id=reservation_id,
                block_id=block_id,
            ))
            start += interval
        grid.slots[duration] = rows
    return grid


def is_slot_free(conflict_group_id: str, start_at: datetime, blocked_end_at: datetime,
                 exclude_reservation_id: int = None) -> bool:
    """
    Point check on [start_at, blocked_end_at). Runs in the caller's session so it
    sees the caller's transaction; the storage constraint still has the final word.
    """
    q = Reservation.occupying(conflict_group_id).filter(
        Reservation.start_at < blocked_end_at,
        Reservation.blocked_end_at > start_at,
    )
    if exclude_reservation_id is not None:
        q = q.filter(Reservation.id != exclude_reservation_id)
    if q.first() is not None:
        return False

    block = ManualBlock.active(conflict_group_id).filter(
        ManualBlock.start_at < blocked_end_at,
        ManualBlock.end_at > start_at,
    ).first()
    return block is None


def has_gap_within(conflict_group_id: str, window_start: datetime, window_end: datetime,
                   required_minutes: int, lead_time_minutes: int = 0, now: datetime = None) -> bool:
    """True if some free stretch of at least required_minutes exists in the window."""
    now = now or datetime.utcnow()
    reservations, blocks = _occupants(conflict_group_id, window_start, window_end)
    occupied = sorted(
        [(r.start_at, r.blocked_end_at) for r in reservations] + [(b.start_at, b.end_at) for b in blocks],
        key=lambda rng: rng[0],
    )
    required = timedelta(minutes=required_minutes)

    cursor = max(window_start, now + timedelta(minutes=lead_time_minutes or 0))
    for start, end in occupied:
        if cursor < start and start - cursor >= required:
            return True
        if end > cursor:
            cursor = end
    return cursor < window_end and window_end - cursor >= required


def facility_available_now(facility_id: int, hours: int = None, now: datetime = None) -> bool:
    """Any play area of the facility with a bookable gap in the next few hours."""
    now = now or datetime.utcnow()
    hours = hours or current_app.config.get("AVAILABLE_NOW_HOURS", 4)
    facility = Facility.query.get(facility_id)
    if not facility or not facility.is_bookable:
        return False

    # only the part of the next few hours the facility is open counts
    tz = facility_tz()
    today = utc_to_local(now, tz).date()
    windows = []
    for day in (today - timedelta(days=1), today):
        open_at, close_at = operating_window(facility, day, tz)
        start, end = max(now, open_at), min(now + timedelta(hours=hours), close_at)
        if start < end:
            windows.append((start, end))

    areas = PlayArea.query.filter_by(facility_id=facility_id, is_active=True, deleted_at=None).all()
    for area in areas:
        profile = next((p for p in area.pricing_profiles if p.is_active), None)
        if profile is None or not profile.allowed_durations:
            continue
        shortest = min(int(d) for d in profile.allowed_durations)
        for start, end in windows:
            if has_gap_within(
                area.conflict_group_id,
                start,
                end,
                shortest + profile.buffer_minutes,
                profile.min_lead_time_minutes,
                now=now,
            ):
                return True
    return False
