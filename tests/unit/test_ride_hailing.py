"""
Unit tests for the ride-hailing rate card model and API adapter
"""

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from core.exceptions import PayloadFormatError, SourceUnavailableError
from ingestion.adapters.ride_hailing import (
    RideHailingAPIAdapter,
    RideHailingRates,
    change_percent,
    detect_rate_changes,
    estimate_fare,
    parse_rate_card,
    rate_card_loader,
    rates_to_observations,
    validate_rates,
)

SNAPSHOT = Path(__file__).resolve().parents[2] / "data" / "snapshots" / "careem_rates.json"


@pytest.fixture
def rate_card():
    return RideHailingRates(
        service_type="careem_go",
        emirate="Dubai",
        base_fare=8.0,
        per_km=1.97,
        per_minute_wait=0.5,
        minimum_fare=12.0,
        peak_surcharge_multiplier=1.5,
        airport_surcharge=20.0,
        salik_toll=5.0,
        effective_date="2025-01-01",
    )


class TestValidateRates:
    """Test rate card sanity checks"""

    def test_valid_card(self, rate_card):
        assert validate_rates(rate_card) == []

    def test_minimum_below_base(self, rate_card):
        card = rate_card.model_copy(update={"minimum_fare": 5.0})

        assert "minimum fare cannot be less than base fare" in validate_rates(card)

    def test_bad_multiplier_and_caps(self, rate_card):
        card = rate_card.model_copy(update={
            "peak_surcharge_multiplier": 0.8,
            "per_km": 12.0,
        })
        problems = validate_rates(card)

        assert any("multiplier" in p for p in problems)
        assert any("per km rate too high" in p for p in problems)

    def test_zero_components(self):
        problems = validate_rates(RideHailingRates())

        assert len(problems) == 3


class TestRatesToObservations:
    """Test splitting a rate card into observations"""

    def test_one_observation_per_component(self, rate_card):
        observations = rates_to_observations(rate_card, source="careem")
        names = [obs.item_name for obs in observations]

        assert names == [
            "Base Fare",
            "Per Kilometer Rate",
            "Per Minute Wait",
            "Minimum Fare",
            "Peak Hour Surcharge",
            "Airport Pickup Surcharge",
            "Salik Toll (per gate)",
        ]
        assert all(obs.category == "Transportation" for obs in observations)
        assert all(obs.sub_category == "Ride Sharing" for obs in observations)

    def test_peak_surcharge_is_base_times_excess(self, rate_card):
        observations = rates_to_observations(rate_card)
        peak = next(obs for obs in observations if obs.item_name == "Peak Hour Surcharge")

        assert peak.price == pytest.approx(4.0)
        assert peak.attributes["multiplier"] == 1.5

    def test_units_and_valid_from(self, rate_card):
        observations = {obs.item_name: obs for obs in rates_to_observations(rate_card)}

        assert observations["Per Kilometer Rate"].unit == "AED/km"
        assert observations["Per Minute Wait"].unit == "AED/min"
        assert observations["Base Fare"].valid_from.year == 2025

    def test_service_specific_rates(self, rate_card):
        card = RideHailingRates.model_validate({
            **rate_card.model_dump(),
            "rates": [
                {"service_type": "Careem Business", "description": "Premium", "base_fare": 12.0, "per_km": 2.6},
            ],
        })
        names = [obs.item_name for obs in rates_to_observations(card)]

        assert "Careem Business - Base Fare" in names
        assert "Careem Business - Per Kilometer" in names
        assert "Careem Business - Minimum Fare" not in names


class TestRateChanges:
    """Test rate change detection"""

    def test_change_percent(self):
        assert change_percent(10.0, 11.0) == pytest.approx(10.0)
        assert change_percent(10.0, 9.0) == pytest.approx(10.0)
        assert change_percent(0.0, 5.0) == 100.0
        assert change_percent(0.0, 0.0) == 0.0

    def test_detects_changes_above_threshold(self, rate_card):
        new = rate_card.model_copy(update={"base_fare": 10.0, "per_km": 2.0})
        changes = detect_rate_changes(rate_card, new, threshold_pct=10.0)

        assert len(changes) == 1
        assert changes[0].startswith("Base fare changed by 25.0%")

    def test_no_previous_card(self, rate_card):
        assert detect_rate_changes(None, rate_card) == []


class TestEstimateFare:
    """Test fare estimation"""

    def test_short_trip_hits_minimum(self, rate_card):
        assert estimate_fare(rate_card, distance_km=1) == 12.0

    def test_peak_airport_and_tolls(self, rate_card):
        base = 8.0 + 1.97 * 10 + 0.5 * 4
        expected = base * 1.5 + 20.0 + 2 * 5.0

        fare = estimate_fare(
            rate_card,
            distance_km=10,
            wait_minutes=4,
            is_peak_hour=True,
            is_airport=True,
            salik_gates=2,
        )

        assert fare == pytest.approx(expected)


class TestRateCardParsing:
    """Test rate card payload handling"""

    def test_unwraps_data_envelope(self, rate_card):
        parsed = parse_rate_card({"data": rate_card.model_dump()})

        assert parsed.base_fare == 8.0

    def test_rejects_non_object(self):
        with pytest.raises(PayloadFormatError):
            parse_rate_card(["not", "a", "card"])

    def test_loader_rejects_insane_card(self):
        load = rate_card_loader("careem")

        with pytest.raises(PayloadFormatError):
            load({"base_fare": 500.0, "per_km": 2.0, "minimum_fare": 600.0})

    def test_shipped_snapshot_loads(self):
        payload = json.loads(SNAPSHOT.read_text())
        observations = rate_card_loader("careem")(payload)

        assert len(observations) == 15
        assert all(obs.source == "careem" for obs in observations)


class TestRideHailingAPIAdapter:
    """Test official rate API adapter"""

    @pytest.mark.asyncio
    async def test_fetches_rate_card(self, provider_config, fast_executor, run_context, rate_card):
        adapter = RideHailingAPIAdapter("careem_api", provider_config, fast_executor)
        response = MagicMock()
        response.status_code = 200
        response.json.return_value = {"data": rate_card.model_dump(mode="json")}

        with patch("httpx.AsyncClient") as mock_client:
            get = AsyncMock(return_value=response)
            mock_client.return_value.__aenter__.return_value.get = get

            observations = await adapter.fetch(run_context)

        assert len(observations) == 7
        assert observations[0].source_url == "https://api.example.com/rates"
        assert get.call_args.kwargs["params"] == {"emirate": "Dubai"}

    @pytest.mark.asyncio
    async def test_insane_card_rejected(self, provider_config, fast_executor, run_context, rate_card):
        adapter = RideHailingAPIAdapter("careem_api", provider_config, fast_executor)
        response = MagicMock()
        response.status_code = 200
        response.json.return_value = rate_card.model_copy(update={"base_fare": 0.0}).model_dump(mode="json")

        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.get = AsyncMock(return_value=response)

            with pytest.raises(PayloadFormatError):
                await adapter.fetch(run_context)

    @pytest.mark.asyncio
    async def test_needs_api_key(self, provider_config, fast_executor, run_context):
        config = provider_config.model_copy(update={"api_key": None})
        adapter = RideHailingAPIAdapter("careem_api", config, fast_executor)

        assert adapter.can_run() is False
        with pytest.raises(SourceUnavailableError):
            await adapter.fetch(run_context)
