"""
Ride lifecycle tests against a real (SQLite) database.

Covers the OTP-gated completion path, cancellation fees, decline and
re-offer, authorization of each transition and the events each one emits.
"""

import pytest

from ridehail.domain.enums import CancelActor, RideStatus, Role, ServiceType, VehicleClass
from ridehail.domain.errors import (
    AlreadyAccepted,
    InvalidOtp,
    InvalidTransition,
    NotAuthorized,
    OtpNotVerified,
    RideNotFound,
)
from ridehail.infrastructure.models import RideModel, UserModel
from ridehail.realtime.auth import anonymous_customer, identity_for
from ridehail.realtime.registry import ride_room
from tests.conftest import connect, new_ride


async def _started_ride(lifecycle, make_user, make_ride, **ride_fields):
    customer = await make_user(Role.CUSTOMER)
    driver = await make_user(Role.DRIVER)
    ride = await make_ride(customer, **ride_fields)
    await lifecycle.accept(ride.id, identity_for(driver))
    await lifecycle.advance_status(ride.id, identity_for(driver), RideStatus.ARRIVED)
    await lifecycle.advance_status(ride.id, identity_for(driver), RideStatus.STARTED)
    return customer, driver, ride


class TestCreateRide:
    @pytest.mark.asyncio
    async def test_prices_and_stores_pending_ride(self, lifecycle, make_user, load):
        customer = await make_user(Role.CUSTOMER)

        created = await lifecycle.create_ride(
            identity_for(customer), new_ride(distance_km=10, duration_min=20)
        )

        stored = await load(RideModel, created.ride.id)
        assert stored.customer_id == customer.id
        assert stored.status == RideStatus.PENDING
        assert stored.final_amount == 12_000
        assert created.dispatch.delivered == 0

    @pytest.mark.asyncio
    async def test_estimates_distance_when_missing(self, lifecycle, make_user):
        customer = await make_user(Role.CUSTOMER)
        created = await lifecycle.create_ride(identity_for(customer), new_ride())
        assert created.ride.distance_km > 0
        assert created.ride.duration_min > 0

    @pytest.mark.asyncio
    async def test_delivered_offer_moves_ride_to_searching(
        self, lifecycle, registry, make_user, load
    ):
        customer = await make_user(Role.CUSTOMER)
        driver = await make_user(Role.DRIVER)
        _, conn = connect(registry, driver)

        created = await lifecycle.create_ride(identity_for(customer), new_ride())

        assert created.dispatch.delivered == 1
        assert conn.names() == ["new-ride-request"]
        stored = await load(RideModel, created.ride.id)
        assert stored.status == RideStatus.SEARCHING

    @pytest.mark.asyncio
    async def test_drivers_cannot_request_rides(self, lifecycle, make_user):
        driver = await make_user(Role.DRIVER)
        with pytest.raises(NotAuthorized):
            await lifecycle.create_ride(identity_for(driver), new_ride())

    @pytest.mark.asyncio
    async def test_anonymous_customer_must_sign_in(self, lifecycle):
        with pytest.raises(NotAuthorized):
            await lifecycle.create_ride(anonymous_customer(), new_ride())


class TestAccept:
    @pytest.mark.asyncio
    async def test_notifies_customer_and_withdraws_offer(
        self, lifecycle, registry, make_user, make_ride
    ):
        customer = await make_user(Role.CUSTOMER)
        winner = await make_user(Role.DRIVER)
        other = await make_user(Role.DRIVER)
        ride = await make_ride(customer)
        _, customer_conn = connect(registry, customer)
        _, winner_conn = connect(registry, winner)
        _, other_conn = connect(registry, other)

        await lifecycle.accept(ride.id, identity_for(winner))

        accepted = customer_conn.events("ride-accepted")
        assert len(accepted) == 1
        assert accepted[0]["data"]["driverId"] == winner.id
        assert accepted[0]["data"]["driverName"] == winner.full_name
        assert winner_conn.names() == ["ride-accepted", "ride-taken"]
        assert other_conn.names() == ["ride-accepted", "ride-taken"]
        assert other_conn.events("ride-taken")[0]["data"] == {
            "rideId": ride.id,
            "takenBy": winner.id,
        }

    @pytest.mark.asyncio
    async def test_sub_driver_accepts_for_parent(self, lifecycle, make_user, make_ride, load):
        customer = await make_user(Role.CUSTOMER)
        parent = await make_user(Role.DRIVER)
        sub = await make_user(Role.SUB_DRIVER, parent_driver_id=parent.id)
        ride = await make_ride(customer)

        await lifecycle.accept(ride.id, identity_for(sub))

        stored = await load(RideModel, ride.id)
        assert stored.driver_id == parent.id
        assert stored.sub_driver_id == sub.id
        assert (await load(UserModel, sub.id)).is_available is False
        assert (await load(UserModel, parent.id)).is_available is False

    @pytest.mark.asyncio
    async def test_driver_cannot_assign_someone_elses_sub_driver(
        self, lifecycle, make_user, make_ride
    ):
        customer = await make_user(Role.CUSTOMER)
        driver = await make_user(Role.DRIVER)
        stranger = await make_user(Role.DRIVER)
        sub = await make_user(Role.SUB_DRIVER, parent_driver_id=stranger.id)
        ride = await make_ride(customer)

        with pytest.raises(NotAuthorized):
            await lifecycle.accept(ride.id, identity_for(driver), sub_driver_id=sub.id)

    @pytest.mark.asyncio
    async def test_customer_cannot_accept(self, lifecycle, make_user, make_ride):
        customer = await make_user(Role.CUSTOMER)
        ride = await make_ride(customer)
        with pytest.raises(NotAuthorized):
            await lifecycle.accept(ride.id, identity_for(customer))

    @pytest.mark.asyncio
    async def test_unknown_ride(self, lifecycle, make_user):
        driver = await make_user(Role.DRIVER)
        with pytest.raises(RideNotFound):
            await lifecycle.accept(9_999, identity_for(driver))

    @pytest.mark.asyncio
    async def test_cancelled_ride_cannot_be_accepted(self, lifecycle, make_user, make_ride):
        customer = await make_user(Role.CUSTOMER)
        driver = await make_user(Role.DRIVER)
        ride = await make_ride(customer, status=RideStatus.CANCELLED)
        with pytest.raises(InvalidTransition):
            await lifecycle.accept(ride.id, identity_for(driver))


class TestOtpCompletion:
    @pytest.mark.asyncio
    async def test_full_trip_with_customer_otp(
        self, lifecycle, registry, make_user, make_ride, load
    ):
        customer, driver, ride = await _started_ride(lifecycle, make_user, make_ride)
        _, customer_conn = connect(registry, customer)
        _, driver_conn = connect(registry, driver)

        await lifecycle.issue_otp(ride.id, identity_for(customer), code="7421")
        assert driver_conn.events("customer_otp_generated")[0]["data"]["otp"] == "7421"

        verified = await lifecycle.verify_otp(ride.id, identity_for(driver), "7421")
        assert verified.otp_verified is True
        assert customer_conn.names()[-1] == "otp-verified-success"

        completion = await lifecycle.complete(ride.id, identity_for(driver))

        stored = await load(RideModel, ride.id)
        assert stored.status == RideStatus.COMPLETED
        assert stored.completed_at is not None
        assert completion.earnings.ride_amount == 8_500
        assert completion.earnings.total_rides == 1
        assert completion.earnings.total_earnings == 8_500

        done = customer_conn.events("ride-completed")
        assert len(done) == 1
        assert done[0]["data"]["earnings"]["totalRides"] == 1
        assert driver_conn.events("ride-completed")

        driver_row = await load(UserModel, driver.id)
        assert driver_row.total_earnings == 8_500
        assert driver_row.is_available is True

    @pytest.mark.asyncio
    async def test_completion_requires_verified_otp(self, lifecycle, make_user, make_ride, load):
        customer, driver, ride = await _started_ride(lifecycle, make_user, make_ride)
        await lifecycle.issue_otp(ride.id, identity_for(customer), code="7421")

        with pytest.raises(OtpNotVerified):
            await lifecycle.complete(ride.id, identity_for(driver))
        assert (await load(RideModel, ride.id)).status == RideStatus.STARTED

    @pytest.mark.asyncio
    async def test_completion_is_once_only(self, lifecycle, make_user, make_ride, load):
        customer, driver, ride = await _started_ride(lifecycle, make_user, make_ride)
        await lifecycle.issue_otp(ride.id, identity_for(customer), code="7421")
        await lifecycle.verify_otp(ride.id, identity_for(driver), "7421")
        await lifecycle.complete(ride.id, identity_for(driver))
        first = (await load(RideModel, ride.id)).completed_at

        with pytest.raises(InvalidTransition):
            await lifecycle.complete(ride.id, identity_for(driver))
        assert (await load(RideModel, ride.id)).completed_at == first
        assert (await load(UserModel, driver.id)).total_rides == 1

    @pytest.mark.asyncio
    async def test_wrong_otp_changes_nothing(self, lifecycle, make_user, make_ride, load):
        customer, driver, ride = await _started_ride(lifecycle, make_user, make_ride)
        await lifecycle.issue_otp(ride.id, identity_for(customer), code="7421")

        with pytest.raises(InvalidOtp):
            await lifecycle.verify_otp(ride.id, identity_for(driver), "1234")
        assert (await load(RideModel, ride.id)).otp_verified is False

    @pytest.mark.asyncio
    async def test_otp_is_trimmed_and_numeric_input_accepted(
        self, lifecycle, make_user, make_ride
    ):
        customer, driver, ride = await _started_ride(lifecycle, make_user, make_ride)
        await lifecycle.issue_otp(ride.id, identity_for(customer), code=" 7421 ")

        verified = await lifecycle.verify_otp(ride.id, identity_for(driver), 7421)
        assert verified.otp_verified is True

    @pytest.mark.asyncio
    async def test_repeat_verification_is_silent(
        self, lifecycle, registry, make_user, make_ride
    ):
        customer, driver, ride = await _started_ride(lifecycle, make_user, make_ride)
        await lifecycle.issue_otp(ride.id, identity_for(customer), code="7421")
        await lifecycle.verify_otp(ride.id, identity_for(driver), "7421")
        _, customer_conn = connect(registry, customer)

        again = await lifecycle.verify_otp(ride.id, identity_for(driver), "0000")
        assert again.otp_verified is True
        assert customer_conn.sent == []

    @pytest.mark.asyncio
    async def test_only_assigned_driver_verifies(self, lifecycle, make_user, make_ride):
        customer, driver, ride = await _started_ride(lifecycle, make_user, make_ride)
        intruder = await make_user(Role.DRIVER)
        await lifecycle.issue_otp(ride.id, identity_for(customer), code="7421")

        with pytest.raises(NotAuthorized):
            await lifecycle.verify_otp(ride.id, identity_for(intruder), "7421")

    @pytest.mark.asyncio
    async def test_generated_otp_uses_configured_length(
        self, lifecycle, make_user, make_ride
    ):
        customer, _, ride = await _started_ride(lifecycle, make_user, make_ride)
        issued = await lifecycle.issue_otp(ride.id, identity_for(customer))
        assert len(issued.otp_code) == lifecycle.settings.otp_length
        assert issued.otp_code.isdigit()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["", "   ", "12a4"])
    async def test_blank_or_non_numeric_otp_rejected(
        self, lifecycle, make_user, make_ride, code
    ):
        customer, _, ride = await _started_ride(lifecycle, make_user, make_ride)
        with pytest.raises(InvalidOtp):
            await lifecycle.issue_otp(ride.id, identity_for(customer), code=code)

    @pytest.mark.asyncio
    async def test_delivery_emits_delivery_completed(
        self, lifecycle, registry, make_user, make_ride
    ):
        customer, driver, ride = await _started_ride(
            lifecycle,
            make_user,
            make_ride,
            service_type=ServiceType.DELIVERY,
            vehicle_class=VehicleClass.BIKE,
        )
        await lifecycle.issue_otp(ride.id, identity_for(customer), code="5555")
        await lifecycle.verify_otp(ride.id, identity_for(driver), "5555")
        _, customer_conn = connect(registry, customer)

        await lifecycle.complete(ride.id, identity_for(driver))
        assert customer_conn.names() == ["delivery-completed"]

    @pytest.mark.asyncio
    async def test_missing_fare_gets_default(self, lifecycle, make_user, make_ride, load):
        customer, driver, ride = await _started_ride(
            lifecycle, make_user, make_ride, final_amount=None, total_fare=None
        )
        await lifecycle.issue_otp(ride.id, identity_for(customer), code="1111")
        await lifecycle.verify_otp(ride.id, identity_for(driver), "1111")

        completion = await lifecycle.complete(ride.id, identity_for(driver))
        assert completion.earnings.ride_amount == 8_500
        assert (await load(RideModel, ride.id)).final_amount == 8_500


class TestAdvanceStatus:
    @pytest.mark.asyncio
    async def test_arrival_stamps_and_notifies_ride_room(
        self, lifecycle, registry, make_user, make_ride, load
    ):
        customer = await make_user(Role.CUSTOMER)
        driver = await make_user(Role.DRIVER)
        ride = await make_ride(customer)
        await lifecycle.accept(ride.id, identity_for(driver))
        watcher, watcher_conn = connect(registry, customer)
        registry.join_room(watcher.sid, ride_room(ride.id))

        await lifecycle.advance_status(ride.id, identity_for(driver), RideStatus.ARRIVED)

        stored = await load(RideModel, ride.id)
        assert stored.status == RideStatus.ARRIVED
        assert stored.arrived_at is not None
        # one session, reachable via several rooms, hears the update once
        assert watcher_conn.names() == ["ride-status-update"]

    @pytest.mark.asyncio
    async def test_cannot_skip_arrival(self, lifecycle, make_user, make_ride):
        customer = await make_user(Role.CUSTOMER)
        driver = await make_user(Role.DRIVER)
        ride = await make_ride(customer)
        await lifecycle.accept(ride.id, identity_for(driver))

        with pytest.raises(InvalidTransition):
            await lifecycle.advance_status(ride.id, identity_for(driver), RideStatus.STARTED)

    @pytest.mark.asyncio
    async def test_completion_not_settable_directly(self, lifecycle, make_user, make_ride):
        customer = await make_user(Role.CUSTOMER)
        driver = await make_user(Role.DRIVER)
        ride = await make_ride(customer)
        with pytest.raises(InvalidTransition):
            await lifecycle.advance_status(
                ride.id, identity_for(driver), RideStatus.COMPLETED
            )


class TestCancel:
    @pytest.mark.asyncio
    async def test_open_ride_cancels_for_free(
        self, lifecycle, registry, make_user, make_ride, load
    ):
        customer = await make_user(Role.CUSTOMER)
        driver = await make_user(Role.DRIVER)
        ride = await make_ride(customer, final_amount=8_500)
        _, driver_conn = connect(registry, driver)

        await lifecycle.cancel(ride.id, identity_for(customer), "changed plans")

        stored = await load(RideModel, ride.id)
        assert stored.status == RideStatus.CANCELLED
        assert stored.cancellation_fee == 0
        assert stored.refund_amount == 8_500
        assert stored.cancelled_by == CancelActor.CUSTOMER
        # open offers are withdrawn from drivers
        assert driver_conn.names() == ["ride-cancelled"]

    @pytest.mark.asyncio
    async def test_accepted_ride_charges_fee_and_frees_driver(
        self, lifecycle, registry, make_user, make_ride, load
    ):
        customer = await make_user(Role.CUSTOMER)
        driver = await make_user(Role.DRIVER)
        ride = await make_ride(customer, final_amount=8_500)
        await lifecycle.accept(ride.id, identity_for(driver))
        _, customer_conn = connect(registry, customer)

        await lifecycle.cancel(ride.id, identity_for(customer))

        stored = await load(RideModel, ride.id)
        assert stored.cancellation_fee == 850
        assert stored.refund_amount == 7_650
        assert stored.driver_id == driver.id
        assert (await load(UserModel, driver.id)).is_available is True
        data = customer_conn.events("ride-cancelled")[0]["data"]
        assert data["cancellationFee"] == 850
        assert data["refundAmount"] == 7_650
        assert data["cancelledBy"] == "customer"

    @pytest.mark.asyncio
    async def test_driver_cancel_is_recorded_as_driver(
        self, lifecycle, make_user, make_ride, load
    ):
        customer = await make_user(Role.CUSTOMER)
        driver = await make_user(Role.DRIVER)
        ride = await make_ride(customer)
        await lifecycle.accept(ride.id, identity_for(driver))

        await lifecycle.cancel(ride.id, identity_for(driver), "vehicle breakdown")
        assert (await load(RideModel, ride.id)).cancelled_by == CancelActor.DRIVER

    @pytest.mark.asyncio
    async def test_terminal_ride_cannot_be_cancelled(self, lifecycle, make_user, make_ride):
        customer = await make_user(Role.CUSTOMER)
        ride = await make_ride(customer, status=RideStatus.COMPLETED)
        with pytest.raises(InvalidTransition):
            await lifecycle.cancel(ride.id, identity_for(customer))

    @pytest.mark.asyncio
    async def test_stranger_cannot_cancel(self, lifecycle, make_user, make_ride):
        customer = await make_user(Role.CUSTOMER)
        other = await make_user(Role.CUSTOMER)
        ride = await make_ride(customer)
        with pytest.raises(NotAuthorized):
            await lifecycle.cancel(ride.id, identity_for(other))

    @pytest.mark.asyncio
    async def test_admin_cancel_is_system(self, lifecycle, make_user, make_ride, load):
        customer = await make_user(Role.CUSTOMER)
        admin = await make_user(Role.ADMIN)
        ride = await make_ride(customer)
        await lifecycle.cancel(ride.id, identity_for(admin))
        assert (await load(RideModel, ride.id)).cancelled_by == CancelActor.SYSTEM


class TestDecline:
    @pytest.mark.asyncio
    async def test_decline_reoffers_without_decliner(
        self, lifecycle, registry, make_user, make_ride
    ):
        customer = await make_user(Role.CUSTOMER)
        decliner = await make_user(Role.DRIVER)
        other = await make_user(Role.DRIVER)
        ride = await make_ride(customer)
        _, decliner_conn = connect(registry, decliner)
        _, other_conn = connect(registry, other)

        result = await lifecycle.decline(ride.id, identity_for(decliner))

        assert result.ok
        assert result.delivered == 1
        assert decliner_conn.sent == []
        assert other_conn.names() == ["new-ride-request"]

    @pytest.mark.asyncio
    async def test_decliners_excluded_from_fallback_too(
        self, lifecycle, registry, make_user, make_ride
    ):
        customer = await make_user(Role.CUSTOMER)
        # offline in presence terms, so only the fallback tier could reach it
        decliner = await make_user(Role.DRIVER, is_available=False)
        ride = await make_ride(customer)
        _, decliner_conn = connect(registry, decliner)

        result = await lifecycle.decline(ride.id, identity_for(decliner))

        assert result.delivered == 0
        assert decliner_conn.sent == []

    @pytest.mark.asyncio
    async def test_declining_an_accepted_ride(self, lifecycle, make_user, make_ride):
        customer = await make_user(Role.CUSTOMER)
        winner = await make_user(Role.DRIVER)
        late = await make_user(Role.DRIVER)
        ride = await make_ride(customer)
        await lifecycle.accept(ride.id, identity_for(winner))

        with pytest.raises(AlreadyAccepted):
            await lifecycle.decline(ride.id, identity_for(late))

    @pytest.mark.asyncio
    async def test_declining_twice_is_harmless(self, lifecycle, make_user, make_ride):
        customer = await make_user(Role.CUSTOMER)
        driver = await make_user(Role.DRIVER)
        ride = await make_ride(customer)

        await lifecycle.decline(ride.id, identity_for(driver))
        result = await lifecycle.decline(ride.id, identity_for(driver))
        assert result.ok


class TestEmergencyAndFetch:
    @pytest.mark.asyncio
    async def test_emergency_flags_ride_and_alerts_admins(
        self, lifecycle, registry, make_user, make_ride, load
    ):
        customer = await make_user(Role.CUSTOMER)
        admin = await make_user(Role.ADMIN)
        ride = await make_ride(customer)
        _, admin_conn = connect(registry, admin)

        await lifecycle.report_emergency(
            identity_for(customer), ride_id=ride.id, message="help"
        )

        assert (await load(RideModel, ride.id)).is_emergency is True
        alert = admin_conn.events("emergency-alert")[0]["data"]
        assert alert["rideId"] == ride.id
        assert alert["userId"] == str(customer.id)
        assert alert["message"] == "help"

    @pytest.mark.asyncio
    async def test_fetch_visibility(self, lifecycle, make_user, make_ride):
        customer = await make_user(Role.CUSTOMER)
        other_customer = await make_user(Role.CUSTOMER)
        driver = await make_user(Role.DRIVER)
        ride = await make_ride(customer)

        assert (await lifecycle.fetch(ride.id, identity_for(customer))).id == ride.id
        # open offers are visible to any driver
        assert (await lifecycle.fetch(ride.id, identity_for(driver))).id == ride.id
        with pytest.raises(NotAuthorized):
            await lifecycle.fetch(ride.id, identity_for(other_customer))


class TestRating:
    @pytest.mark.asyncio
    async def test_customer_rates_completed_ride(self, lifecycle, make_user, make_ride, load):
        customer = await make_user(Role.CUSTOMER)
        driver = await make_user(Role.DRIVER)
        ride = await make_ride(
            customer, driver_id=driver.id, status=RideStatus.COMPLETED
        )

        rated = await lifecycle.rate(ride.id, identity_for(customer), 4, "smooth trip")

        assert rated.customer_rating == 4
        assert rated.customer_feedback == "smooth trip"
        assert rated.rated_at is not None
        assert (await load(UserModel, driver.id)).rating == 4.0

    @pytest.mark.asyncio
    async def test_driver_rating_is_average_to_one_decimal(
        self, lifecycle, make_user, make_ride, load
    ):
        driver = await make_user(Role.DRIVER)
        for score in (5, 4, 4):
            customer = await make_user(Role.CUSTOMER)
            ride = await make_ride(
                customer, driver_id=driver.id, status=RideStatus.COMPLETED
            )
            await lifecycle.rate(ride.id, identity_for(customer), score)

        assert (await load(UserModel, driver.id)).rating == 4.3

    @pytest.mark.asyncio
    async def test_ride_is_rated_once(self, lifecycle, make_user, make_ride, load):
        customer = await make_user(Role.CUSTOMER)
        driver = await make_user(Role.DRIVER)
        ride = await make_ride(
            customer, driver_id=driver.id, status=RideStatus.COMPLETED
        )
        await lifecycle.rate(ride.id, identity_for(customer), 5)

        with pytest.raises(InvalidTransition, match="already rated"):
            await lifecycle.rate(ride.id, identity_for(customer), 1)
        assert (await load(RideModel, ride.id)).customer_rating == 5

    @pytest.mark.asyncio
    async def test_only_completed_rides(self, lifecycle, make_user, make_ride):
        customer = await make_user(Role.CUSTOMER)
        driver = await make_user(Role.DRIVER)
        ride = await make_ride(customer, driver_id=driver.id, status=RideStatus.STARTED)

        with pytest.raises(InvalidTransition):
            await lifecycle.rate(ride.id, identity_for(customer), 5)

    @pytest.mark.asyncio
    async def test_only_the_customer_rates(self, lifecycle, make_user, make_ride):
        customer = await make_user(Role.CUSTOMER)
        driver = await make_user(Role.DRIVER)
        ride = await make_ride(
            customer, driver_id=driver.id, status=RideStatus.COMPLETED
        )

        with pytest.raises(NotAuthorized):
            await lifecycle.rate(ride.id, identity_for(driver), 5)


class TestActiveRide:
    @pytest.mark.asyncio
    async def test_customer_and_driver_see_ride_in_progress(
        self, lifecycle, make_user, make_ride
    ):
        customer = await make_user(Role.CUSTOMER)
        driver = await make_user(Role.DRIVER)
        await make_ride(customer, status=RideStatus.COMPLETED)
        ride = await make_ride(customer)
        await lifecycle.accept(ride.id, identity_for(driver))

        assert (await lifecycle.active_ride(identity_for(customer))).id == ride.id
        assert (await lifecycle.active_ride(identity_for(driver))).id == ride.id

    @pytest.mark.asyncio
    async def test_nothing_active(self, lifecycle, make_user, make_ride):
        customer = await make_user(Role.CUSTOMER)
        await make_ride(customer, status=RideStatus.CANCELLED)

        with pytest.raises(RideNotFound, match="No active ride"):
            await lifecycle.active_ride(identity_for(customer))
        with pytest.raises(RideNotFound):
            await lifecycle.active_ride(anonymous_customer())

    @pytest.mark.asyncio
    async def test_operated_ride_rejects_other_drivers(
        self, lifecycle, make_user, make_ride
    ):
        customer = await make_user(Role.CUSTOMER)
        driver = await make_user(Role.DRIVER)
        other = await make_user(Role.DRIVER)
        ride = await make_ride(customer, driver_id=driver.id, status=RideStatus.STARTED)

        assert (await lifecycle.operated_ride(ride.id, identity_for(driver))).id == ride.id
        with pytest.raises(NotAuthorized):
            await lifecycle.operated_ride(ride.id, identity_for(other))
