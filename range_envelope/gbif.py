"""
GBIF API client: taxon lookup and georeferenced occurrence search.

Converting records to presence points lives in `PointSource.from_occurrences`.
"""

import logging
from typing import Optional

import requests

logger = logging.getLogger(__name__)


GBIF_API_URL = "https://api.gbif.org/v1"
# Records per occurrence search request (GBIF caps this at 300)
GBIF_PAGE_LIMIT = 300
REQUEST_TIMEOUT = 30


def _get_json(endpoint: str, params: dict) -> dict:
    response = requests.get(f"{GBIF_API_URL}/{endpoint}", params=params, timeout=REQUEST_TIMEOUT)
    response.raise_for_status()
    return response.json()


def get_species_key(species_name: str) -> Optional[int]:
    """
    Look up the GBIF backbone taxon key of a scientific name.

    Returns:
        Taxon key, or None when GBIF has no match
    """
    match = _get_json("species/match", {"name": species_name})
    if match.get("matchType") == "NONE":
        logger.info(f"No GBIF match for {species_name}")
        return None
    return match.get("usageKey")


def fetch_gbif_occurrences(
    taxon_key: int,
    bbox: tuple[float, float, float, float],
    limit: int = GBIF_PAGE_LIMIT,
    max_records: Optional[int] = None,
) -> list[dict]:
    """
    Fetch present, georeferenced occurrences of a taxon inside a bounding box.

    Pages through the search until GBIF reports the end of the records or
    `max_records` have been collected.

    Args:
        taxon_key: GBIF taxon key for the species
        bbox: (min_lon, min_lat, max_lon, max_lat)
        limit: Page size of each request
        max_records: Stop after this many records

    Returns:
        List of occurrence records as returned by GBIF
    """
    min_lon, min_lat, max_lon, max_lat = bbox
    query = {
        "taxonKey": taxon_key,
        "hasCoordinate": "true",
        "hasGeospatialIssue": "false",
        "occurrenceStatus": "PRESENT",
        "decimalLongitude": f"{min_lon},{max_lon}",
        "decimalLatitude": f"{min_lat},{max_lat}",
        "limit": limit,
    }

    records: list[dict] = []
    while max_records is None or len(records) < max_records:
        page = _get_json("occurrence/search", {**query, "offset": len(records)})
        results = page.get("results", [])
        records.extend(results)
        logger.debug(f"Fetched {len(records)} / {page.get('count', '?')} occurrences")

        if not results or page.get("endOfRecords") or len(records) >= page.get("count", 0):
            break

    return records if max_records is None else records[:max_records]
