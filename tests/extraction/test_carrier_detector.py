"""Tests for trackage.extraction.carrier_detector - formats and check digits"""

import pytest

from trackage.extraction.carrier_detector import (
    FormatMatch,
    detect_carrier,
    fedex_express_check_digit_valid,
    get_tracking_url,
    match_formats,
    mod10_check_digit_valid,
    normalize_tracking_number,
    s10_check_digit_valid,
    ups_check_digit_valid,
)
from trackage.models import Courier

UPS_VALID = "1Z999AA10123456784"
FEDEX_EXPRESS_VALID = "123456789012"
FEDEX_GROUND_VALID = "123456789012343"
SSCC_VALID = "00001234567890123452"
USPS_22_VALID = "9400111202555842761025"
S10_VALID = "EC123456785US"


class TestNormalize:

    def test_strips_spaces_dashes_and_dots(self):
        assert normalize_tracking_number("9400 1112-0255.5842 7610 25") == USPS_22_VALID

    def test_uppercases(self):
        assert normalize_tracking_number("1z999aa10123456784") == UPS_VALID


class TestCheckDigits:

    def test_ups_valid(self):
        assert ups_check_digit_valid(UPS_VALID)

    def test_ups_wrong_check_digit(self):
        assert not ups_check_digit_valid("1Z999AA10123456785")

    def test_ups_wrong_length(self):
        assert not ups_check_digit_valid("1Z999AA1012345678")

    def test_fedex_express_valid(self):
        assert fedex_express_check_digit_valid(FEDEX_EXPRESS_VALID)

    def test_fedex_express_wrong_check_digit(self):
        assert not fedex_express_check_digit_valid("123456789013")

    def test_mod10_valid(self):
        assert mod10_check_digit_valid(FEDEX_GROUND_VALID)
        assert mod10_check_digit_valid(SSCC_VALID)
        assert mod10_check_digit_valid(USPS_22_VALID)

    def test_mod10_wrong_check_digit(self):
        assert not mod10_check_digit_valid("9400111202555842761026")

    def test_mod10_rejects_non_digits(self):
        assert not mod10_check_digit_valid("94001112025558427610AB")

    def test_s10_valid(self):
        assert s10_check_digit_valid(S10_VALID)

    def test_s10_wrong_check_digit(self):
        assert not s10_check_digit_valid("EC123456784US")


class TestMatchFormats:

    def test_ups(self):
        assert match_formats(UPS_VALID) == [FormatMatch(Courier.UPS, "UPS")]

    def test_fedex_express(self):
        assert match_formats(FEDEX_EXPRESS_VALID) == [FormatMatch(Courier.FEDEX, "FedEx Express")]

    def test_fedex_ground(self):
        assert match_formats(FEDEX_GROUND_VALID) == [FormatMatch(Courier.FEDEX, "FedEx Ground")]

    def test_usps_22_digits(self):
        assert match_formats(USPS_22_VALID) == [FormatMatch(Courier.USPS, "USPS Tracking")]

    def test_usps_international(self):
        assert match_formats(S10_VALID) == [FormatMatch(Courier.USPS, "USPS International")]

    def test_20_digits_is_ambiguous(self):
        couriers = {m.courier for m in match_formats(SSCC_VALID)}
        assert couriers == {Courier.FEDEX, Courier.USPS}

    def test_bad_checksum_matches_nothing(self):
        assert match_formats("9400100000000000000000") == []

    def test_22_digits_must_start_with_9(self):
        assert match_formats("1" + USPS_22_VALID[1:]) == []

    def test_unknown_length(self):
        assert match_formats("1234567") == []


class TestDetectCarrier:

    def test_unambiguous(self):
        assert detect_carrier("1z 999 aa1 0123 4567 84") == Courier.UPS
        assert detect_carrier(FEDEX_EXPRESS_VALID) == Courier.FEDEX
        assert detect_carrier(S10_VALID) == Courier.USPS

    def test_ambiguous_returns_none(self):
        assert detect_carrier(SSCC_VALID) is None

    def test_invalid_returns_none(self):
        assert detect_carrier("not-a-number") is None


class TestTrackingUrl:

    @pytest.mark.parametrize("courier,fragment", [
        (Courier.UPS, "ups.com/track?tracknum="),
        (Courier.FEDEX, "fedex.com/fedextrack/?trknbr="),
        (Courier.USPS, "tools.usps.com/go/TrackConfirmAction?tLabels="),
    ])
    def test_url_per_courier(self, courier, fragment):
        url = get_tracking_url(courier, " 123 ")
        assert fragment in url
        assert url.endswith("=123")
