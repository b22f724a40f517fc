from __future__ import annotations

import logging

import pytest

from backend.netpulse.services.speed import DEFAULT_PROFILE, BandwidthProfile, SpeedConverter


@pytest.mark.parametrize(
    "raw, download, upload",
    [
        ("10 Mbps", 10000, 5000),
        ("10mbps", 10000, 5000),
        ("512 Kbps", 512, 256),
        ("1 GBPS", 1000000, 500000),
        ("2.5 Mbps", 2500, 1250),
        ("Home plan 20 Mbps unlimited", 20000, 10000),
    ],
)
def test_parse_converts_units_to_kbps(raw, download, upload):
    profile = SpeedConverter.parse(raw)

    assert profile == BandwidthProfile(download, upload)
    assert profile.is_default is False


def test_upload_is_half_of_download_rounded_half_up():
    assert SpeedConverter.parse("1 kbps").upload_kbps == 1
    assert SpeedConverter.parse("3 kbps").upload_kbps == 2


@pytest.mark.parametrize("raw", ["", None, "fast", "10 Mb", "Mbps"])
def test_unparseable_speed_falls_back_to_default(raw, caplog):
    with caplog.at_level(logging.WARNING, logger="backend.netpulse.services.speed"):
        profile = SpeedConverter.parse(raw)

    assert profile is DEFAULT_PROFILE
    assert (profile.download_kbps, profile.upload_kbps) == (10000, 5000)
    assert profile.is_default is True
    assert "falling back" in caplog.text


def test_rate_limit_lists_upload_first():
    assert BandwidthProfile(10000, 5000).rate_limit == "5000k/10000k"
