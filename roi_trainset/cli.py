from __future__ import annotations

import logging
import sys
from pathlib import Path

import click

from roi_trainset import __version__
from roi_trainset.core.config import (
    NORMALIZATIONS,
    AppConfig,
    AssemblyConfig,
    FeatureExtractionConfig,
    OutputConfig,
    PreprocessingConfig,
)
from roi_trainset.core.images import open_image
from roi_trainset.core.images.loader import IMAGE_SUFFIXES, SLIDE_SUFFIXES
from roi_trainset.models.features import build_default_registry
from roi_trainset.services.annotations import load_geojson
from roi_trainset.services.storage import TrainingSetWriter
from roi_trainset.services.training_data import TrainingDataService
from roi_trainset.utils import (
    configure_logging,
    parse_sigmas,
    validate_fraction,
    validate_positive_int,
)

logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger("roi_trainset.cli")

_DEFAULT_REGISTRY = build_default_registry(device="cpu")
FEATURE_EXTRACTOR_CHOICES = _DEFAULT_REGISTRY.available()


@click.group()
@click.version_option(version=__version__)
def cli():
    """roi-trainset CLI.

    Turns classified annotations on an image into a pixel-classifier training
    set: per-pixel features under each ROI, one integer label per class.
    """


@cli.command()
@click.argument("image_path", type=click.Path(exists=True, dir_okay=False))
@click.argument("annotations_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--output", "-o", type=click.Path(dir_okay=False), required=True, help="Output .h5 file.")
@click.option(
    "--extractor",
    type=click.Choice(FEATURE_EXTRACTOR_CHOICES, case_sensitive=False),
    default="filters",
    show_default=True,
    help="Feature extractor used for every tile.",
)
@click.option(
    "--downsample", type=float, default=1.0, show_default=True, help="Resolution to compute at."
)
@click.option(
    "--tile-size",
    type=int,
    default=256,
    show_default=True,
    callback=validate_positive_int,
    help="Extractor input width/height in output pixels.",
)
@click.option(
    "--sigmas",
    type=str,
    default="1 2 4",
    show_default=True,
    callback=parse_sigmas,
    help="Space/comma separated Gaussian scales for the filter bank.",
)
@click.option(
    "--pool", type=int, default=1, show_default=True, callback=validate_positive_int,
    help="Average-pool factor applied to feature maps.",
)
@click.option("--device", type=str, default="cpu", show_default=True, help="cpu, cuda or cuda:<index>.")
@click.option(
    "--normalize",
    type=click.Choice(NORMALIZATIONS, case_sensitive=False),
    default="mean-variance",
    show_default=True,
)
@click.option(
    "--missing-value",
    type=float,
    default=0.0,
    show_default=True,
    help="Substituted for NaN/inf feature values.",
)
@click.option(
    "--pca",
    "pca_retained",
    type=float,
    default=None,
    callback=validate_fraction,
    help="Keep PCA components explaining this fraction of variance.",
)
@click.option("--pca-whiten", is_flag=True, help="Scale PCA components to unit variance.")
@click.option(
    "--tile-workers",
    type=int,
    default=None,
    callback=validate_positive_int,
    help="Worker threads computing the tiles of one ROI; tiles run serially when omitted.",
)
@click.option("--overwrite", is_flag=True, help="Replace an existing output file.")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def assemble(
    image_path: str,
    annotations_path: str,
    output: str,
    extractor: str,
    downsample: float,
    tile_size: int,
    sigmas: tuple[float, ...],
    pool: int,
    device: str,
    normalize: str,
    missing_value: float,
    pca_retained: float | None,
    pca_whiten: bool,
    tile_workers: int | None,
    overwrite: bool,
    verbose: bool,
):
    """Assemble training data from IMAGE and GeoJSON ANNOTATIONS into an HDF5 file."""
    configure_logging(verbose)

    try:
        app_cfg = AppConfig(
            output=OutputConfig(output_path=Path(output), overwrite=overwrite),
            assembly=AssemblyConfig(
                downsample=downsample, tile_workers=tile_workers, show_progress=not verbose
            ),
            preprocessing=PreprocessingConfig(
                normalize=normalize,
                missing_value=missing_value,
                pca_retained=pca_retained,
                pca_whiten=pca_whiten,
            ),
            features=FeatureExtractionConfig(
                extractor=extractor, device=device, sigmas=sigmas, pool=pool
            ),
        ).validated()
    except (ValueError, FileExistsError) as e:
        raise click.UsageError(str(e)) from e

    registry = build_default_registry(
        device=app_cfg.features.device,
        sigmas=app_cfg.features.sigmas,
        pool=app_cfg.features.pool,
        input_size=tile_size,
    )
    feature_extractor = registry.create(app_cfg.features.extractor)
    annotations = load_geojson(annotations_path)

    with open_image(image_path) as image:
        service = TrainingDataService(
            image,
            annotations,
            feature_extractor,
            assembly_cfg=app_cfg.assembly,
            preprocessing_cfg=app_cfg.preprocessing,
        )
        try:
            training = service.get_training_data()
            if training is None:
                raise click.ClickException(
                    "No training data: at least two classes with usable annotations are required."
                )
            writer = TrainingSetWriter(
                feature_names=feature_extractor.channel_names(),
                extra_file_attrs={
                    "image_path": str(Path(image_path).resolve()),
                    "annotations_path": str(Path(annotations_path).resolve()),
                    "extractor": app_cfg.features.extractor,
                    "downsample": app_cfg.assembly.downsample,
                    "tile_size": tile_size,
                    "sigmas": list(app_cfg.features.sigmas),
                }
            )
            out_path = writer.write(app_cfg.output.output_path, training)
            stats = service.last_stats
        finally:
            service.close()
            feature_extractor.cleanup()

    ts = training.training_set
    click.echo(f"Wrote {ts.n_rows} rows x {ts.n_features} features -> {out_path}")
    for label, cl in ts.class_labels.items():
        click.echo(f"  [{label}] {cl.name}: {ts.class_counts().get(label, 0)} rows")
    if verbose and stats is not None:
        click.echo(
            f"ROIs computed={stats.rois_computed} skipped={stats.rois_skipped} "
            f"empty={stats.rois_empty}; tiles computed={stats.tiles_computed} "
            f"failed={stats.tiles_failed}"
        )


@cli.command()
def info():
    """Display supported formats, extractors and output structure."""
    click.echo("Slide formats (OpenSlide): " + ", ".join(SLIDE_SUFFIXES))
    click.echo("Image formats (Pillow): " + ", ".join(IMAGE_SUFFIXES))
    click.echo("Annotations: GeoJSON FeatureCollection with properties.classification")
    click.echo("Feature extractors:")
    for name, summary in _DEFAULT_REGISTRY.describe().items():
        click.echo(f"  {name}: {summary}")
    click.echo(
        "Outputs: one HDF5 with features (N, C), labels (N,), roi_index (N,), preprocessor/* and class_labels attrs."
    )


def main():
    try:
        cli()
    except click.ClickException as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        sys.exit(130)
    except Exception as e:  # noqa: BLE001
        click.echo(f"Unexpected error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
