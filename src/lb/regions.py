"""Maps the edge point of presence to the closest backend region."""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping, Optional

from constants import Constants

POP_TO_REGION: Mapping[str, str] = MappingProxyType({
    # North America
    "DFW": "us-central1",
    "IAD": "us-central1",
    "ORD": "us-central1",
    "ATL": "us-central1",
    "MIA": "us-central1",
    "LAX": "us-central1",
    "SJC": "us-central1",
    "SEA": "us-central1",
    "DEN": "us-central1",
    "YYZ": "us-central1",
    "YVR": "us-central1",
    # Europe
    "AMS": "europe-west1",
    "LHR": "europe-west1",
    "FRA": "europe-west1",
    "CDG": "europe-west1",
    "MAD": "europe-west1",
    "MAN": "europe-west1",
    "ARN": "europe-west1",
    "CPH": "europe-west1",
    "VIE": "europe-west1",
    "WAW": "europe-west1",
    # Japan
    "NRT": "asia-northeast1",
    "KIX": "asia-northeast1",
    # India
    "BOM": "asia-south1",
    "DEL": "asia-south1",
    "MAA": "asia-south1",
    # South-East Asia
    "SIN": "asia-southeast1",
    "KUL": "asia-southeast1",
    "BKK": "asia-southeast1",
    "MNL": "asia-southeast1",
    "HKG": "asia-southeast1",
    "TPE": "asia-southeast1",
    # South America
    "GRU": "southamerica-east1",
    "SCL": "southamerica-east1",
    "EZE": "southamerica-east1",
    "BOG": "southamerica-east1",
    "LIM": "southamerica-east1",
    # Oceania
    "SYD": "australia-southeast1",
    "MEL": "australia-southeast1",
    "PER": "australia-southeast1",
    "AKL": "australia-southeast1",
})


class RegionSelector:
    """Static lookup from PoP code to backend region.

    Unknown or missing codes resolve to the default region.
    """

    def __init__(
        self,
        table: Mapping[str, str] = POP_TO_REGION,
        default_region: str = Constants.DEFAULT_REGION,
    ):
        self._table = table
        self._default_region = default_region

    def select_region(self, pop: Optional[str]) -> str:
        if not pop:
            return self._default_region
        return self._table.get(pop.strip().upper(), self._default_region)

    def backend_url(
        self,
        pop: Optional[str],
        regional_urls: Mapping[str, str],
        fallback_url: str,
    ) -> str:
        """Pick the base URL for ``pop`` from ``regional_urls``.

        Falls back to the default region's URL, then to ``fallback_url``.
        """
        region = self.select_region(pop)
        return (
            regional_urls.get(region)
            or regional_urls.get(self._default_region)
            or fallback_url
        )


def pop_from_header(header_name: str, value: Optional[str]) -> Optional[str]:
    """Extract the PoP code from the configured header value.

    ``CF-Ray`` values look like ``8a1b2c3d4e5f-DFW``; the colo is the suffix.
    Any other header is taken to hold the code itself.
    """
    if not value:
        return None
    if header_name.lower() == "cf-ray":
        _, sep, colo = value.rpartition("-")
        if not sep or not colo:
            return None
        return colo
    return value.strip() or None
