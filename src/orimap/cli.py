import argparse
import sys
import logging
from pathlib import Path
from typing import List, Optional, Sequence

from orimap.errors import OrimapError
from orimap.params import ContourAlgorithm, MapParameters

LIDAR_SUFFIXES = (".las", ".laz")

def setup_logging(level: int = logging.INFO) -> None:
    """
    Configures the standard logging format and level for the command-line interface.

    Args:
        level (int): The logging threshold level.
    """
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

def collect_inputs(inputs: Sequence[str]) -> List[Path]:
    """
    Expands the positional inputs into lidar file paths.

    Directories contribute every .las/.laz file they hold (non-recursive, sorted).
    """
    paths = []
    for raw in inputs:
        path = Path(raw)
        if path.is_dir():
            paths.extend(sorted(p for p in path.iterdir() if p.suffix.lower() in LIDAR_SUFFIXES))
        else:
            paths.append(path)
    return paths

def build_parameters(args: argparse.Namespace) -> MapParameters:
    """
    Builds the run configuration: the JSON parameter file first, then any flag given on the command line.
    """
    values = {}
    if args.params:
        values = MapParameters.from_json(args.params).to_dict()

    overrides = {
        "scale": args.scale,
        "contour_interval": args.contour_interval,
        "basemap_interval": args.basemap_interval,
        "output_epsg": args.output_epsg,
        "default_epsg": args.default_epsg,
        "contour_algorithm": args.contour_algorithm,
    }
    values.update({k: v for k, v in overrides.items() if v is not None})

    if args.form_lines:
        values["form_lines"] = True
    if args.basemap:
        values["basemap"] = True
    if args.intensity:
        values["intensity"] = True
    if args.write_tiffs:
        values["write_tiffs"] = True
        values["tiff_directory"] = args.write_tiffs

    return MapParameters.from_dict(values)

def make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="orimap",
        description="Generate orienteering map vectors from airborne lidar point clouds"
    )
    parser.add_argument(
        "inputs",
        nargs="+",
        help="Input .las/.laz files, or directories holding them."
    )
    parser.add_argument(
        "-o", "--output",
        required=True,
        help="Output vector file. GeoPackage unless --driver says otherwise."
    )
    parser.add_argument(
        "--driver",
        default="GPKG",
        help="OGR driver used to write the output. Defaults to GPKG."
    )
    parser.add_argument(
        "--params",
        type=str,
        help="JSON file with map parameters. Flags below override its values."
    )
    parser.add_argument("--scale", type=int, help="Map scale denominator (e.g. 15000).")
    parser.add_argument("--contour-interval", type=float, help="Contour interval in meters.")
    parser.add_argument("--basemap-interval", type=float, help="Basemap contour interval in meters.")
    parser.add_argument("--basemap", action="store_true", help="Draw basemap contours.")
    parser.add_argument("--form-lines", action="store_true", help="Draw form lines at half the contour interval.")
    parser.add_argument("--intensity", action="store_true", help="Map intensity filter bands.")
    parser.add_argument(
        "--contour-algorithm",
        choices=[a.value for a in ContourAlgorithm],
        help="Elevation model preparation before contouring."
    )
    parser.add_argument("--output-epsg", type=int, help="EPSG code of the output file.")
    parser.add_argument("--default-epsg", type=int, help="EPSG code assumed for files without a CRS.")
    parser.add_argument("--workers", type=int, help="Number of tile workers. Defaults to the CPU count.")
    parser.add_argument(
        "--write-tiffs",
        metavar="DIR",
        help="Also write the per-tile DEM, DRM, DIM and slope grids as GeoTIFFs into DIR."
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser

def main(argv: Optional[Sequence[str]] = None) -> None:
    """
    Parses command-line arguments and runs the map generation.
    """
    parser = make_parser()
    args = parser.parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    from orimap.pipeline import make_map

    try:
        params = build_parameters(args)
    except (ValueError, FileNotFoundError) as e:
        logging.error(f"Invalid map parameters: {e}")
        sys.exit(1)

    paths = collect_inputs(args.inputs)
    if not paths:
        logging.error("No lidar files found in the given inputs.")
        sys.exit(1)

    try:
        document = make_map(paths, params, workers=args.workers)
        if document is None:
            logging.warning("Map generation was cancelled, nothing written.")
            sys.exit(1)
        document.save(args.output, driver=args.driver, target_epsg=params.output_epsg)
    except (OrimapError, IOError) as e:
        logging.error(f"Map generation failed: {e}")
        sys.exit(1)

    logging.info(f"Map written to {args.output}")

if __name__ == "__main__":
    main()
