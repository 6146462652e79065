"""
Tier resolver — turns a lane's waterfall configuration into dispatch stages.

Stage order:
  1. custom tiers, by their ``order`` rank
  2. remaining carriers — grouped by equal rate (auto-tier) in ascending rate,
     or one stage per carrier in entry order

Stages are built fresh for every run and never stored on their own.
"""
import logging
from collections import Counter
from typing import Dict, List, Optional

from waterfall.engine.errors import ConfigError
from waterfall.engine.models import (
    CustomTier, Stage, WaterfallEntry, format_cents,
    STAGE_AUTO, STAGE_CUSTOM, STAGE_INDIVIDUAL,
)

logger = logging.getLogger('engine.tiers')


def validate(entries: List[WaterfallEntry], custom_tiers: List[CustomTier]) -> List[str]:
    """Return every configuration problem as a field-level message."""
    errors = []
    if not entries:
        errors.append('At least one carrier must be added to the waterfall')

    for i, entry in enumerate(entries, start=1):
        if entry.response_window <= 0:
            errors.append(f"Carrier {i} ({entry.carrier_id}): Response window must be greater than 0")

    counts = Counter(entry.carrier_id for entry in entries)
    for carrier_id, n in counts.items():
        if n > 1:
            errors.append(f"Carrier {carrier_id} appears {n} times in the waterfall")

    owner: Dict[str, str] = {}
    for tier in custom_tiers:
        for carrier_id in dict.fromkeys(tier.carrier_ids):
            if carrier_id in owner:
                errors.append(
                    f"Carrier {carrier_id} is in both custom tiers "
                    f"'{owner[carrier_id]}' and '{tier.name or tier.id}'"
                )
            else:
                owner[carrier_id] = tier.name or tier.id
    return errors


def resolve(
    entries: List[WaterfallEntry],
    custom_tiers: Optional[List[CustomTier]] = None,
    auto_tier_enabled: bool = False,
) -> List[Stage]:
    """
    Resolve entries + custom tiers into an ordered list of stages.

    Raises ConfigError when entries are empty, a response window is not
    positive, a carrier is listed twice, or a carrier sits in two custom tiers.
    """
    custom_tiers = custom_tiers or []
    errors = validate(entries, custom_tiers)
    if errors:
        raise ConfigError(errors)

    by_id = {entry.carrier_id: entry for entry in entries}
    groups = []   # (name, kind, tier_id, [entries])
    claimed = set()

    # ── Custom tiers first ──
    for tier in sorted(custom_tiers, key=lambda t: t.order):
        members = []
        for carrier_id in dict.fromkeys(tier.carrier_ids):
            entry = by_id.get(carrier_id)
            if entry is None:
                logger.warning("Custom tier '%s' references carrier %s which is not on the waterfall — ignoring",
                               tier.name or tier.id, carrier_id)
                continue
            members.append(entry)
            claimed.add(carrier_id)
        if not members:
            logger.warning("Custom tier '%s' has no carriers on this waterfall — skipping", tier.name or tier.id)
            continue
        groups.append((tier.name or tier.id, STAGE_CUSTOM, tier.id, members))

    remaining = [entry for entry in entries if entry.carrier_id not in claimed]

    # ── Auto-tier by matching rate, or one stage per carrier ──
    if auto_tier_enabled:
        by_rate: Dict[int, List[WaterfallEntry]] = {}
        unrated = []
        for entry in remaining:
            if entry.carrier.rate_cents is None:
                unrated.append(entry)
            else:
                by_rate.setdefault(entry.carrier.rate_cents, []).append(entry)
        for rate in sorted(by_rate):
            groups.append((f"Rate {format_cents(rate)}", STAGE_AUTO, None, by_rate[rate]))
        for entry in unrated:
            groups.append((entry.carrier.name or entry.carrier_id, STAGE_INDIVIDUAL, None, [entry]))
    else:
        for entry in remaining:
            groups.append((entry.carrier.name or entry.carrier_id, STAGE_INDIVIDUAL, None, [entry]))

    stages = [
        Stage(index=i, name=name, kind=kind, entries=tuple(members), tier_id=tier_id)
        for i, (name, kind, tier_id, members) in enumerate(groups)
    ]
    logger.debug("Resolved %d entries into %d stages (auto_tier=%s, custom_tiers=%d)",
                 len(entries), len(stages), auto_tier_enabled, len(custom_tiers))
    return stages
