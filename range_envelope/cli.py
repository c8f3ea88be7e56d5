"""
Command-line interface for the surface range envelope.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from .envelope import DEFAULT_QUANT
from .gbif import fetch_gbif_occurrences, get_species_key
from .pipeline import sre
from .projection import count_suitable
from .sources import PointSource, RasterSource


def run_envelope(
    layers: list[Path],
    output_dir: Path,
    species_name: Optional[str] = None,
    occurrences_path: Optional[Path] = None,
    quant: float = DEFAULT_QUANT,
    bounds_only: bool = False,
    n_jobs: int = 1,
) -> dict:
    """
    Complete pipeline: presence points, envelope fit, suitability map.

    Presences come from GBIF (species_name, searched within the raster
    extent) or from a GeoJSON file of points (occurrences_path).

    Args:
        layers: Environmental raster files, one variable per band
        output_dir: Directory to save outputs
        species_name: Scientific name of the species to fetch from GBIF
        occurrences_path: GeoJSON file of presence points
        quant: Fraction of extreme values dropped at each tail
        bounds_only: Only write the fitted bounds
        n_jobs: Number of joblib workers

    Returns:
        Dictionary with results and statistics
    """
    if (species_name is None) == (occurrences_path is None):
        raise ValueError("Give exactly one of species_name or occurrences_path")

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    raster = RasterSource.from_files(layers)
    print(f"Loaded {len(raster.names)} layers on a {raster.shape[0]} x {raster.shape[1]} grid")

    if species_name is not None:
        name = species_name
        taxon_key = get_species_key(species_name)
        if taxon_key is None:
            raise ValueError(f"Species not found in GBIF: {species_name}")
        print(f"GBIF taxon key: {taxon_key}")

        occurrences = fetch_gbif_occurrences(taxon_key, raster.bounds)
        presences = PointSource.from_occurrences(occurrences, species_name)
        occ_path = output_dir / f"{_slug(name)}_occurrences.geojson"
        with open(occ_path, "w") as f:
            json.dump(presences.to_geojson(f"{_slug(name)}_occurrences"), f, indent=2)
        print(f"Saved {len(presences.features)} occurrences to {occ_path}")
    else:
        name = Path(occurrences_path).stem
        points = PointSource.from_geojson(occurrences_path, fields=[]).coordinates
        presences = PointSource.presences(points, name)

    results = {
        "species": name,
        "layers": list(raster.names),
        "quant": quant,
        "n_presences": len(presences.features),
    }

    result = sre(
        presences,
        raster,
        quant=quant,
        return_bounds=bounds_only,
        n_jobs=n_jobs,
    )

    if bounds_only:
        bounds_path = output_dir / f"{_slug(name)}_bounds.csv"
        result.bounds_frame().to_csv(bounds_path)
        print(f"Saved bounds to {bounds_path}")
        results["bounds"] = {
            variable: list(result.bounds[name].interval(variable))
            for variable in result.bounds[name].names
        }
    else:
        prediction = result.predictions
        raster_path = prediction.save(output_dir / f"{_slug(name)}_suitability.tif")
        print(f"Saved suitability raster to {raster_path}")

        geojson_path = output_dir / f"{_slug(name)}_suitable.geojson"
        with open(geojson_path, "w") as f:
            json.dump(prediction.to_geojson(name), f)
        print(f"Saved suitable cells to {geojson_path}")
        results["cells"] = count_suitable(prediction.layer(name).ravel())

    results_path = output_dir / f"{_slug(name)}_results.json"
    with open(results_path, "w") as f:
        json.dump(results, f, indent=2)
    print(f"\nSaved results summary to {results_path}")

    return results


def _slug(name: str) -> str:
    return name.replace(" ", "_").lower()


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Fit a surface range envelope (BIOCLIM) and map suitability")
    parser.add_argument("layers", nargs="+", type=Path, help="Environmental raster files (GeoTIFF)")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--species", help="Scientific name of the species to fetch from GBIF (e.g., 'Gulo gulo')")
    source.add_argument("--occurrences", type=Path, help="GeoJSON file of presence points")
    parser.add_argument("--quant", "-q", type=float, default=DEFAULT_QUANT,
                        help="Fraction of extreme values dropped at each tail, in [0, 0.5)")
    parser.add_argument("--output-dir", "-o", type=Path, default=Path("./output"), help="Output directory")
    parser.add_argument("--bounds-only", action="store_true", help="Only write the fitted bounds")
    parser.add_argument("--n-jobs", "-j", type=int, default=1, help="Number of parallel workers")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        run_envelope(
            layers=args.layers,
            output_dir=args.output_dir,
            species_name=args.species,
            occurrences_path=args.occurrences,
            quant=args.quant,
            bounds_only=args.bounds_only,
            n_jobs=args.n_jobs,
        )
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
