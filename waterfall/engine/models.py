"""
Waterfall data records — carriers, entries, custom tiers, stages.

These are the plain records the lane/load CRUD layer hands to the engine.
Payloads arrive as the camelCase JSON the dashboard already stores
(``items``, ``customTiers``, ``autoTierEnabled``, ``carrier.rate`` in dollars);
``LaneConfig.from_dict`` turns them into typed records.

Rates are held as integer cents so auto-tier grouping compares exactly.
"""
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from waterfall.config import DEFAULT_RESPONSE_WINDOW
from waterfall.engine.errors import ConfigError


# ── Run status values ─────────────────────────────────────────────────────────
NOT_STARTED = 'not_started'
RUNNING = 'running'
PAUSED = 'paused'
SUCCEEDED = 'succeeded'
EXHAUSTED = 'exhausted'
CANCELLED = 'cancelled'

TERMINAL_STATUSES = frozenset({SUCCEEDED, EXHAUSTED, CANCELLED})

# ── Per-carrier outcomes ──────────────────────────────────────────────────────
PENDING = 'pending'
ACCEPTED = 'accepted'
DECLINED = 'declined'
TIMED_OUT = 'timed_out'

RESPONSE_OUTCOMES = (ACCEPTED, DECLINED)

# ── Stage kinds ───────────────────────────────────────────────────────────────
STAGE_CUSTOM = 'custom'
STAGE_AUTO = 'auto'
STAGE_INDIVIDUAL = 'individual'

WEEKDAYS = ['mon', 'tue', 'wed', 'thu', 'fri', 'sat', 'sun']


def to_minor_units(value) -> Optional[int]:
    """
    Convert a dollar amount to integer cents.

    Accepts None, "", "$1,900.50", "1900.5", 1900, 1900.5.
    Returns None for missing values; raises ValueError for non-numeric input.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid rate: {value!r}")
    if isinstance(value, str):
        value = value.strip().replace('$', '').replace(',', '')
        if value == '':
            return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Invalid rate: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Invalid rate: {value!r}")
    return int((amount * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def _coerce_cents(value) -> int:
    """Whole-number cents as given by API clients (``rateCents``)."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid rateCents: {value!r}")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"Invalid rateCents: {value!r}")
    if not amount.is_finite() or amount != amount.to_integral_value():
        raise ValueError(f"Invalid rateCents: {value!r}")
    return int(amount)


def format_cents(cents: Optional[int]) -> str:
    """1275050 → '$12,750.50'"""
    if cents is None:
        return 'no rate'
    return f"${Decimal(cents) / 100:,.2f}"


def _parse_weekday(day) -> int:
    if isinstance(day, int) and 0 <= day <= 6:
        return day
    key = str(day).strip().lower()[:3]
    if key not in WEEKDAYS:
        raise ValueError(f"Unknown day of week: {day!r}")
    return WEEKDAYS.index(key)


def _coerce_window(value, label: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{label}: response window must be a whole number of minutes")
    try:
        window = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{label}: response window must be a whole number of minutes")
    if window != value and not isinstance(value, str):
        raise ConfigError(f"{label}: response window must be a whole number of minutes")
    return window


@dataclass(frozen=True)
class CapacityRule:
    """Trucks per day a carrier commits on a set of weekdays (0=Mon … 6=Sun)."""
    days: FrozenSet[int]
    trucks: int

    def to_dict(self) -> Dict[str, Any]:
        return {'days': [WEEKDAYS[d] for d in sorted(self.days)], 'capacity': self.trucks}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CapacityRule':
        days = frozenset(_parse_weekday(d) for d in data.get('days') or [])
        trucks = int(data.get('capacity', data.get('trucks', 0)) or 0)
        if trucks < 0:
            raise ValueError("Capacity cannot be negative")
        return cls(days=days, trucks=trucks)


@dataclass
class Carrier:
    id: str
    name: str = ''
    mc_number: str = ''
    rate_cents: Optional[int] = None
    contact_email: str = ''
    contact_name: str = ''
    response_window: int = DEFAULT_RESPONSE_WINDOW
    capacity: Tuple[CapacityRule, ...] = ()

    def __post_init__(self):
        seen = set()
        for rule in self.capacity:
            overlap = seen & rule.days
            if overlap:
                days = ', '.join(WEEKDAYS[d] for d in sorted(overlap))
                raise ConfigError(f"Carrier {self.id}: capacity rules overlap on {days}")
            seen |= rule.days

    def capacity_on(self, weekday: int) -> Optional[int]:
        """Trucks available on a weekday. None when the carrier has no capacity rules."""
        if not self.capacity:
            return None
        for rule in self.capacity:
            if weekday in rule.days:
                return rule.trucks
        return 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'mcNumber': self.mc_number,
            'rateCents': self.rate_cents,
            'contactEmail': self.contact_email,
            'contactName': self.contact_name,
            'responseWindow': self.response_window,
            'availability': [rule.to_dict() for rule in self.capacity],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Carrier':
        if not isinstance(data, dict) or data.get('id') in (None, ''):
            raise ConfigError("Carrier ID is required")
        carrier_id = str(data['id'])
        try:
            if data.get('rateCents') is not None:
                rate_cents = _coerce_cents(data['rateCents'])
            else:
                rate_cents = to_minor_units(data.get('rate'))
        except ValueError as e:
            raise ConfigError(f"Carrier {carrier_id}: {e}")
        try:
            capacity = tuple(CapacityRule.from_dict(r) for r in data.get('availability') or [])
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Carrier {carrier_id}: {e}")
        window = data.get('responseWindow')
        return cls(
            id=carrier_id,
            name=data.get('name', '') or '',
            mc_number=data.get('mcNumber', '') or '',
            rate_cents=rate_cents,
            contact_email=data.get('contactEmail', '') or '',
            contact_name=data.get('contactName', '') or '',
            response_window=_coerce_window(window, f"Carrier {carrier_id}") if window is not None else DEFAULT_RESPONSE_WINDOW,
            capacity=capacity,
        )


@dataclass
class WaterfallEntry:
    """One carrier on a lane's waterfall, with its own response window in minutes."""
    carrier: Carrier
    response_window: int

    @property
    def carrier_id(self) -> str:
        return self.carrier.id

    def to_dict(self) -> Dict[str, Any]:
        return {'carrier': self.carrier.to_dict(), 'responseWindow': self.response_window}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WaterfallEntry':
        if not isinstance(data, dict):
            raise ConfigError("Waterfall item must be an object")
        carrier = Carrier.from_dict(data.get('carrier') or {})
        window = data.get('responseWindow')
        if window is None:
            window = carrier.response_window
        return cls(carrier=carrier, response_window=_coerce_window(window, f"Carrier {carrier.id}"))


@dataclass
class CustomTier:
    """User-authored carrier group. Takes priority over auto-tiering."""
    id: str
    name: str
    carrier_ids: List[str] = field(default_factory=list)
    order: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'name': self.name, 'carrierIds': list(self.carrier_ids), 'order': self.order}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CustomTier':
        if not isinstance(data, dict) or not data.get('id'):
            raise ConfigError("Custom tier ID is required")
        return cls(
            id=str(data['id']),
            name=(data.get('name') or '').strip(),
            carrier_ids=[str(cid) for cid in data.get('carrierIds') or []],
            order=int(data.get('order', 0) or 0),
        )


@dataclass(frozen=True)
class Stage:
    """
    One step of the waterfall: carriers offered the load simultaneously.

    The effective response window is the smallest member window, so no
    carrier is ever held past its own limit.
    """
    index: int
    name: str
    kind: str
    entries: Tuple[WaterfallEntry, ...]
    tier_id: Optional[str] = None

    @property
    def response_window(self) -> int:
        return min(entry.response_window for entry in self.entries)

    @property
    def carrier_ids(self) -> List[str]:
        return [entry.carrier_id for entry in self.entries]

    def entry_for(self, carrier_id: str) -> Optional[WaterfallEntry]:
        for entry in self.entries:
            if entry.carrier_id == carrier_id:
                return entry
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'index': self.index,
            'name': self.name,
            'kind': self.kind,
            'tier_id': self.tier_id,
            'response_window': self.response_window,
            'entries': [entry.to_dict() for entry in self.entries],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Stage':
        return cls(
            index=data['index'],
            name=data['name'],
            kind=data['kind'],
            entries=tuple(WaterfallEntry.from_dict(e) for e in data['entries']),
            tier_id=data.get('tier_id'),
        )


def _lane_detail_errors(data: Dict[str, Any]) -> List[str]:
    errors = []
    for key, label in (('originZip', 'Origin'), ('destinationZip', 'Destination')):
        value = str(data.get(key) or '').strip()
        if len(value) != 5 or not value.isdigit():
            errors.append(f"{label} ZIP code must be 5 digits")
    if not str(data.get('equipment') or '').strip():
        errors.append('Equipment type is required')
    return errors


@dataclass
class LaneConfig:
    """A lane's waterfall as saved by the dashboard."""
    lane_id: str
    entries: List[WaterfallEntry]
    custom_tiers: List[CustomTier] = field(default_factory=list)
    auto_tier_enabled: bool = False
    origin_zip: str = ''
    destination_zip: str = ''
    equipment: str = ''

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LaneConfig':
        """
        Parse a lane payload, collecting every field-level problem.

        Accepts either a full lane record with a nested ``waterfall`` object
        or the waterfall fields at top level. Only a full lane record has its
        ZIP codes and equipment checked.
        """
        if not isinstance(data, dict):
            raise ConfigError('Lane must be a JSON object')
        errors = []
        lane_id = data.get('id') or data.get('laneId')
        if not lane_id:
            errors.append('Lane ID is required')

        if 'waterfall' in data:
            errors.extend(_lane_detail_errors(data))
        waterfall = data.get('waterfall') or data
        if not isinstance(waterfall, dict):
            raise ConfigError(errors + ['Waterfall must be a JSON object'])
        entries = []
        for i, item in enumerate(waterfall.get('items') or [], start=1):
            try:
                entry = WaterfallEntry.from_dict(item)
            except ConfigError as e:
                errors.extend(f"Carrier {i}: {msg}" for msg in e.errors)
                continue
            if entry.carrier.rate_cents is not None and entry.carrier.rate_cents <= 0:
                errors.append(f"Carrier {i}: Rate must be greater than 0")
            entries.append(entry)

        tiers = []
        for tier in waterfall.get('customTiers') or []:
            try:
                tiers.append(CustomTier.from_dict(tier))
            except (ConfigError, TypeError, ValueError) as e:
                errors.append(f"Custom tier: {e}")

        if errors:
            raise ConfigError(errors)

        return cls(
            lane_id=str(lane_id),
            entries=entries,
            custom_tiers=tiers,
            auto_tier_enabled=bool(waterfall.get('autoTierEnabled', False)),
            origin_zip=str(data.get('originZip') or ''),
            destination_zip=str(data.get('destinationZip') or ''),
            equipment=data.get('equipment', '') or '',
        )
