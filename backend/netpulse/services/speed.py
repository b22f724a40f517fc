"""Conversion of package speed labels into access server bandwidth limits."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP

LOGGER = logging.getLogger(__name__)

SPEED_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*(kbps|mbps|gbps)", re.IGNORECASE)
UNIT_MULTIPLIERS = {
    "kbps": Decimal("1"),
    "mbps": Decimal("1000"),
    "gbps": Decimal("1000000"),
}
UPLOAD_RATIO = Decimal("0.5")
DEFAULT_DOWNLOAD_KBPS = 10000
DEFAULT_UPLOAD_KBPS = 5000


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class BandwidthProfile:
    """Download and upload limits in kbps.

    ``is_default`` marks the fallback profile returned for unparseable labels;
    it does not take part in equality so callers can compare plain values.
    """

    download_kbps: int
    upload_kbps: int
    is_default: bool = field(default=False, compare=False)

    @property
    def rate_limit(self) -> str:
        """Router rate limit string, upload first (``5000k/10000k``)."""
        return f"{self.upload_kbps}k/{self.download_kbps}k"


DEFAULT_PROFILE = BandwidthProfile(DEFAULT_DOWNLOAD_KBPS, DEFAULT_UPLOAD_KBPS, is_default=True)


class SpeedConverter:
    """Parses labels such as ``"10 Mbps"`` or ``"1.5gbps"``."""

    @staticmethod
    def parse(raw_speed: str | None) -> BandwidthProfile:
        match = SPEED_PATTERN.search(raw_speed or "")
        if match is None:
            LOGGER.warning(
                "Unrecognised speed %r; falling back to %s/%s kbps",
                raw_speed,
                DEFAULT_DOWNLOAD_KBPS,
                DEFAULT_UPLOAD_KBPS,
            )
            return DEFAULT_PROFILE

        value = Decimal(match.group(1))
        unit = match.group(2).lower()
        download = _round_half_up(value * UNIT_MULTIPLIERS[unit])
        upload = _round_half_up(Decimal(download) * UPLOAD_RATIO)
        return BandwidthProfile(download_kbps=download, upload_kbps=upload)
