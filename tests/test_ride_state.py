"""Unit tests for ride state transitions (State Pattern) and lifecycle rules."""

import pytest

from ridehail.domain.entities import (
    RideParties,
    check_transition,
    generate_otp,
    otp_matches,
    quote_cancellation,
)
from ridehail.domain.enums import RIDE_TRANSITIONS, RideStatus, Role
from ridehail.domain.errors import InvalidTransition
from ridehail.services.dispatch import DispatchTier, tier_for_role

FEE_RATE = 0.10
FEE_CAP = 5_000


class TestRideStateMachine:
    # ── Valid transitions ─────────────────────────────────────────

    @pytest.mark.parametrize(
        "current, new",
        [
            (RideStatus.PENDING, RideStatus.SEARCHING),
            (RideStatus.PENDING, RideStatus.ACCEPTED),
            (RideStatus.SEARCHING, RideStatus.ACCEPTED),
            (RideStatus.ACCEPTED, RideStatus.ARRIVED),
            (RideStatus.ARRIVED, RideStatus.STARTED),
            (RideStatus.STARTED, RideStatus.COMPLETED),
            (RideStatus.STARTED, RideStatus.CANCELLED),
        ],
    )
    def test_valid_transition(self, current, new):
        check_transition(current, new)

    # ── Invalid transitions ───────────────────────────────────────

    def test_pending_to_completed_fails(self):
        with pytest.raises(InvalidTransition):
            check_transition(RideStatus.PENDING, RideStatus.COMPLETED)

    def test_accepted_to_started_skips_arrival(self):
        with pytest.raises(InvalidTransition):
            check_transition(RideStatus.ACCEPTED, RideStatus.STARTED)

    def test_no_way_back_to_searching(self):
        with pytest.raises(InvalidTransition):
            check_transition(RideStatus.ACCEPTED, RideStatus.SEARCHING)

    @pytest.mark.parametrize("terminal", [RideStatus.COMPLETED, RideStatus.CANCELLED])
    def test_terminal_states_are_final(self, terminal):
        assert RIDE_TRANSITIONS[terminal] == set()
        for status in RideStatus:
            with pytest.raises(InvalidTransition):
                check_transition(terminal, status)

    def test_every_status_has_rules(self):
        assert set(RIDE_TRANSITIONS) == set(RideStatus)


class TestCancellationQuote:
    @pytest.mark.parametrize("status", [RideStatus.PENDING, RideStatus.SEARCHING])
    def test_free_before_acceptance(self, status):
        quote = quote_cancellation(status, 8_500, FEE_RATE, FEE_CAP)
        assert quote.fee == 0
        assert quote.refund == 8_500

    def test_ten_percent_after_acceptance(self):
        quote = quote_cancellation(RideStatus.ACCEPTED, 8_500, FEE_RATE, FEE_CAP)
        assert quote.fee == 850
        assert quote.refund == 7_650

    def test_fee_is_capped(self):
        quote = quote_cancellation(RideStatus.STARTED, 100_000, FEE_RATE, FEE_CAP)
        assert quote.fee == 5_000
        assert quote.refund == 95_000

    def test_refund_never_negative(self):
        quote = quote_cancellation(RideStatus.ARRIVED, 0, FEE_RATE, FEE_CAP)
        assert quote.fee == 0
        assert quote.refund == 0


class TestOtp:
    def test_whitespace_and_type_are_ignored(self):
        assert otp_matches("7421", " 7421 ")
        assert otp_matches("7421", 7421)

    def test_mismatch(self):
        assert not otp_matches("7421", "7422")

    def test_blank_stored_code_never_matches(self):
        assert not otp_matches(None, "")
        assert not otp_matches("", "")
        assert not otp_matches("  ", " ")

    def test_generated_code_is_numeric(self):
        code = generate_otp(6)
        assert len(code) == 6
        assert code.isdigit()


class TestRideParties:
    def test_operator_includes_sub_driver(self):
        parties = RideParties(customer_id=1, driver_id=2, sub_driver_id=3)
        assert parties.is_operator(2)
        assert parties.is_operator(3)
        assert not parties.is_operator(1)
        assert not parties.is_operator(None)

    def test_unassigned_ride_has_no_operator(self):
        assert not RideParties(customer_id=1).is_operator(None)


class TestDispatchTiers:
    def test_roles_map_to_tiers(self):
        assert tier_for_role(Role.DRIVER) is DispatchTier.MAIN_DRIVERS
        assert tier_for_role(Role.SUB_DRIVER) is DispatchTier.SUB_DRIVERS
        assert tier_for_role(Role.CUSTOMER) is None
        assert tier_for_role(Role.ADMIN) is None

    def test_every_role_is_decided(self):
        for role in Role:
            tier_for_role(role)

    def test_unknown_role_is_rejected(self):
        with pytest.raises(ValueError):
            tier_for_role("dispatcher")
