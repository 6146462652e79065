"""Tests for waterfall.engine.models — rate parsing, carriers, lane payload parsing."""
import pytest

from waterfall.engine.errors import ConfigError
from waterfall.engine.models import (
    CapacityRule, Carrier, LaneConfig, Stage, WaterfallEntry,
    STAGE_CUSTOM, format_cents, to_minor_units,
)


# ── to_minor_units / format_cents ────────────────────────────────────────────

class TestRates:

    @pytest.mark.parametrize('value,expected', [
        (2500, 250000),
        (2500.5, 250050),
        ('1,900.50', 190050),
        ('$1,900.50', 190050),
        (' 12.345 ', 1235),
        ('0.005', 1),
        (None, None),
        ('', None),
    ])
    def test_to_minor_units(self, value, expected):
        assert to_minor_units(value) == expected

    @pytest.mark.parametrize('value', ['abc', 'nan', True])
    def test_invalid_rate_raises(self, value):
        with pytest.raises(ValueError):
            to_minor_units(value)

    def test_format_cents(self):
        assert format_cents(1275050) == '$12,750.50'
        assert format_cents(250000) == '$2,500.00'
        assert format_cents(None) == 'no rate'


# ── Carrier capacity ─────────────────────────────────────────────────────────

class TestCarrierCapacity:

    def test_no_rules_means_unlimited(self):
        assert Carrier(id='A').capacity_on(0) is None

    def test_capacity_by_weekday(self):
        carrier = Carrier.from_dict({'id': 'A', 'availability': [
            {'days': ['Mon', 'Tue', 'Wed'], 'capacity': 3},
            {'days': ['fri'], 'capacity': 1},
        ]})
        assert carrier.capacity_on(0) == 3
        assert carrier.capacity_on(4) == 1
        assert carrier.capacity_on(5) == 0

    def test_overlapping_rules_rejected(self):
        with pytest.raises(ConfigError) as exc:
            Carrier(id='A', capacity=(
                CapacityRule(days=frozenset({0, 1}), trucks=2),
                CapacityRule(days=frozenset({1, 2}), trucks=1),
            ))
        assert 'overlap on tue' in str(exc.value)

    def test_unknown_day_rejected(self):
        with pytest.raises(ConfigError):
            Carrier.from_dict({'id': 'A', 'availability': [{'days': ['someday'], 'capacity': 1}]})

    def test_negative_capacity_rejected(self):
        with pytest.raises(ConfigError):
            Carrier.from_dict({'id': 'A', 'availability': [{'days': ['mon'], 'capacity': -1}]})


# ── Carrier / entry parsing ──────────────────────────────────────────────────

class TestCarrierParsing:

    def test_from_dict_dollars(self):
        carrier = Carrier.from_dict({'id': 'carrier_001', 'name': 'Swift', 'rate': '$2,500'})
        assert carrier.rate_cents == 250000
        assert carrier.name == 'Swift'

    def test_from_dict_prefers_rate_cents(self):
        carrier = Carrier.from_dict({'id': 'A', 'rate': 1, 'rateCents': 4200})
        assert carrier.rate_cents == 4200

    def test_missing_id_rejected(self):
        with pytest.raises(ConfigError):
            Carrier.from_dict({'name': 'No ID'})

    def test_round_trip(self):
        carrier = Carrier.from_dict({'id': 'A', 'name': 'Acme', 'mcNumber': 'MC-1', 'rate': 1000,
                                     'availability': [{'days': ['mon'], 'capacity': 2}]})
        assert Carrier.from_dict(carrier.to_dict()) == carrier

    def test_entry_window_falls_back_to_carrier(self):
        entry = WaterfallEntry.from_dict({'carrier': {'id': 'A', 'responseWindow': 45}})
        assert entry.response_window == 45

    def test_entry_fractional_window_rejected(self):
        with pytest.raises(ConfigError):
            WaterfallEntry.from_dict({'carrier': {'id': 'A'}, 'responseWindow': 12.5})

    def test_stage_round_trip(self, make_entry):
        stage = Stage(index=0, name='Preferred', kind=STAGE_CUSTOM,
                      entries=(make_entry('A', rate=2500, window=20),), tier_id='t1')
        assert Stage.from_dict(stage.to_dict()) == stage


# ── LaneConfig ───────────────────────────────────────────────────────────────

class TestLaneConfig:

    def test_parses_dashboard_payload(self, lane_payload):
        config = LaneConfig.from_dict(lane_payload)
        assert config.lane_id == 'lane-1'
        assert [e.carrier_id for e in config.entries] == ['carrier_001', 'carrier_002', 'carrier_003']
        assert config.entries[2].carrier.rate_cents == 285000
        assert config.custom_tiers[0].carrier_ids == ['carrier_001', 'carrier_002']
        assert config.auto_tier_enabled is False
        assert config.origin_zip == '60601'

    def test_top_level_waterfall_fields(self):
        config = LaneConfig.from_dict({'laneId': 'lane-9', 'autoTierEnabled': True,
                                       'items': [{'carrier': {'id': 'A'}, 'responseWindow': 10}]})
        assert config.lane_id == 'lane-9'
        assert config.auto_tier_enabled is True
        assert config.entries[0].response_window == 10

    def test_missing_lane_id(self):
        with pytest.raises(ConfigError) as exc:
            LaneConfig.from_dict({'items': []})
        assert 'Lane ID is required' in exc.value.errors

    def test_collects_item_errors(self, lane_payload):
        items = lane_payload['waterfall']['items']
        items[0]['carrier']['rate'] = 0
        items[1]['carrier']['rate'] = 'lots'
        with pytest.raises(ConfigError) as exc:
            LaneConfig.from_dict(lane_payload)
        errors = exc.value.errors
        assert 'Carrier 1: Rate must be greater than 0' in errors
        assert any(e.startswith('Carrier 2:') for e in errors)
        assert len(errors) == 2

    def test_empty_items_parse(self):
        # emptiness is reported by the resolver, not the parser
        assert LaneConfig.from_dict({'id': 'lane-1', 'items': []}).entries == []

    @pytest.mark.parametrize('rate_cents', ['abc', 12.5, 'NaN', True, [250000]])
    def test_bad_rate_cents_is_field_error(self, lane_payload, rate_cents):
        carrier = lane_payload['waterfall']['items'][0]['carrier']
        del carrier['rate']
        carrier['rateCents'] = rate_cents
        with pytest.raises(ConfigError) as exc:
            LaneConfig.from_dict(lane_payload)
        assert len(exc.value.errors) == 1
        assert exc.value.errors[0].startswith('Carrier 1: ')
        assert 'Invalid rateCents' in exc.value.errors[0]

    def test_rate_cents_string_accepted(self, lane_payload):
        carrier = lane_payload['waterfall']['items'][0]['carrier']
        carrier['rateCents'] = '250000'
        assert LaneConfig.from_dict(lane_payload).entries[0].carrier.rate_cents == 250000

    def test_non_object_items_are_field_errors(self, lane_payload):
        lane_payload['waterfall']['items'][1] = 'carrier_002'
        lane_payload['waterfall']['items'][2]['carrier'] = ['carrier_003']
        lane_payload['waterfall']['customTiers'].append('tier-2')
        with pytest.raises(ConfigError) as exc:
            LaneConfig.from_dict(lane_payload)
        assert exc.value.errors == [
            'Carrier 2: Waterfall item must be an object',
            'Carrier 3: Carrier ID is required',
            'Custom tier: Custom tier ID is required',
        ]

    @pytest.mark.parametrize('payload', ['lane-1', ['lane-1'], {'id': 'lane-1', 'waterfall': 'wf-1'}])
    def test_non_object_lane_rejected(self, payload):
        with pytest.raises(ConfigError):
            LaneConfig.from_dict(payload)


class TestLaneDetails:
    """Full lane records carry ZIP codes and equipment that must be filled in."""

    def test_bad_zips_and_missing_equipment(self, lane_payload):
        lane_payload['originZip'] = '6060'
        lane_payload['destinationZip'] = '7520A'
        lane_payload['equipment'] = ' '
        with pytest.raises(ConfigError) as exc:
            LaneConfig.from_dict(lane_payload)
        assert exc.value.errors == [
            'Origin ZIP code must be 5 digits',
            'Destination ZIP code must be 5 digits',
            'Equipment type is required',
        ]

    def test_missing_lane_fields_reported_with_item_errors(self, lane_payload):
        del lane_payload['originZip']
        lane_payload['waterfall']['items'][0]['carrier']['rate'] = 0
        with pytest.raises(ConfigError) as exc:
            LaneConfig.from_dict(lane_payload)
        assert exc.value.errors == ['Origin ZIP code must be 5 digits', 'Carrier 1: Rate must be greater than 0']

    def test_numeric_zip_accepted(self, lane_payload):
        lane_payload['destinationZip'] = 75201
        assert LaneConfig.from_dict(lane_payload).destination_zip == '75201'

    def test_bare_waterfall_skips_lane_details(self):
        config = LaneConfig.from_dict({'id': 'lane-9', 'items': [{'carrier': {'id': 'A'}}]})
        assert config.origin_zip == ''
