#!/usr/bin/env python
"""
Main Fiber Processing Pipeline

Warps a fiber bundle through a deformation field, resamples diffusion tensors
along every fiber and optionally voxelizes the fibers into a label map.

The pipeline supports:
- Displacement fields and h-fields (absolute destination coordinates)
- Tensor resampling with FA, MD, Frobenius norm and eigenvalue maps per point
- Label maps in overwrite-label or per-point count mode
- Parallel per-fiber transformation with joblib

Usage:
    fiberprocess fibers.trk --fiber-output warped.trk --h-field hfield.nii.gz \\
        --tensor-volume atlas_dti.nii.gz --voxelize labels.nii.gz [options]
"""

import argparse
import logging
import sys
import warnings

import numpy as np
from joblib import Parallel, delayed
from tqdm import tqdm

from . import __version__
from .bundle import Bundle
from .fiber_io import atomic_outputs, read_bundle, write_bundle
from .fields import read_deformation_field, read_tensor_field
from .options import ProcessingOptions
from .streamline_processing import transform_fiber
from .transform import CoordinateMode
from .validation import (
    FiberProcessIOError,
    TensorOutOfBoundsError,
    ValidationError,
    ValidationWarning,
    setup_logging,
    validate_options,
)
from .voxelize import LabelVolume

logger = logging.getLogger(__name__)


class ProcessingReport:
    """Counts and recoverable events gathered during one run."""

    def __init__(self, n_fibers=0, n_points=0, events=None):
        self.n_fibers = n_fibers
        self.n_points = n_points
        self.events = list(events or [])

    @property
    def warp_events(self):
        return [e for e in self.events if e.stage == 'warp']

    @property
    def voxelize_events(self):
        return [e for e in self.events if e.stage == 'voxelize']

    def __repr__(self):
        return (f"ProcessingReport(n_fibers={self.n_fibers}, n_points={self.n_points}, "
                f"warp_events={len(self.warp_events)}, voxelize_events={len(self.voxelize_events)})")


def process_bundle(bundle, options, deformation_field=None, tensor_field=None, label_volume=None):
    """
    Transform every fiber of a bundle and assemble the output bundle.

    Parameters
    ----------
    bundle : Bundle
        Input bundle; it is not modified.
    options : ProcessingOptions
        Run configuration.
    deformation_field : DeformationField, optional
        Without one, fiber geometry passes through unchanged.
    tensor_field : TensorField, optional
        Resampled along the (warped) fibers unless ``options.no_data_change``.
    label_volume : LabelVolume, optional
        Written into with every (warped) point, in fiber order.

    Returns
    -------
    Bundle
        New bundle with fibers renumbered from 1. In warp mode its positions
        are world coordinates with unit spacing and an identity transform;
        otherwise spacing and transform are copied from ``bundle``.
    ProcessingReport
    """
    warp_output = deformation_field is not None and not options.no_warp
    attribute_field = None if options.no_data_change else tensor_field

    if len(bundle) == 0:
        warnings.warn("Fiber bundle contains no fibers", ValidationWarning)
    short = [f.identifier for f in bundle if len(f) < 2]
    if short:
        warnings.warn(f"{len(short)} fibers have fewer than 2 points", ValidationWarning)

    logger.debug("Group Spacing: %s", bundle.spacing.tolist())
    logger.debug("Group Offset: %s", bundle.offset.tolist())
    if deformation_field is not None:
        logger.debug("Deformation field: %r", deformation_field)
    logger.debug("Starting Loop")

    def jobs():
        for fiber in bundle:
            yield delayed(transform_fiber)(
                fiber, bundle.spacing, bundle.fiber_transform(fiber), options.coordinate_mode,
                deformation_field=deformation_field, tensor_field=attribute_field,
                warp_output=warp_output,
            )

    if options.n_jobs == 1:
        results = [func(*args, **kwargs) for func, args, kwargs
                   in tqdm(jobs(), total=len(bundle), desc="Fibers", disable=not options.verbose)]
    else:
        results = Parallel(n_jobs=options.n_jobs)(jobs())

    report = ProcessingReport(n_fibers=len(bundle), n_points=bundle.n_points)
    fibers = []
    for new_id, result in enumerate(results, start=1):
        report.events.extend(result.events)
        if label_volume is not None:
            # one writer, fiber order, so label writes are deterministic
            report.events.extend(label_volume.write_points(
                result.sample_points, options.voxel_mode, options.voxel_label,
                fiber_id=result.fiber.identifier,
            ))
        fiber = result.fiber
        fiber.identifier = new_id
        fibers.append(fiber)

    for event in report.events:
        logger.warning(event.describe())

    logger.debug("Ending Loop")

    if warp_output:
        # warped positions are world coordinates
        spacing, transform = np.ones(3), np.eye(4)
    else:
        spacing, transform = bundle.spacing.copy(), bundle.transform.copy()

    output = Bundle(fibers, spacing=spacing, transform=transform,
                    identifier=bundle.identifier, dimensions=bundle.dimensions)
    return output, report


def process_and_save(options):
    """
    Run the full pipeline: read inputs, transform, then write outputs.

    Every input is read and every fiber processed before anything is
    written, and the output files are moved into place together once all of
    them have been written, so a fatal error leaves no output behind.

    Parameters
    ----------
    options : ProcessingOptions

    Returns
    -------
    Bundle
        Output bundle.
    LabelVolume or None
        Label volume when ``options.voxelize`` is set.
    ProcessingReport

    Raises
    ------
    ValidationError
        Missing input or incompatible options.
    FiberProcessIOError
        A file could not be read or written.
    TensorOutOfBoundsError
        A point fell outside the tensor volume.
    """
    validate_options(options)

    logger.info("=== Loading Fiber Bundle ===")
    bundle = read_bundle(options.fiber_file)
    logger.info(f"Loaded {len(bundle)} fibers ({bundle.n_points} points) from {options.fiber_file}")

    deformation_field = None
    if options.deformation_path is not None:
        logger.info(f"=== Loading {options.deformation_kind.value} field ===")
        deformation_field = read_deformation_field(
            options.deformation_path, options.deformation_kind, lps=options.lps_field
        )

    tensor_field = None
    if options.tensor_volume is not None:
        logger.info("=== Loading Tensor Volume ===")
        tensor_field = read_tensor_field(options.tensor_volume, order=options.tensor_order)

    label_volume = None
    if options.voxelize is not None:
        label_volume = LabelVolume.like(tensor_field)

    # without a fiber output there is nothing to attribute tensors to
    attribute_field = tensor_field if options.attribute_tensors else None

    logger.info("=== Transforming Fibers ===")
    output_bundle, report = process_bundle(
        bundle, options,
        deformation_field=deformation_field,
        tensor_field=attribute_field,
        label_volume=label_volume,
    )
    logger.info(f"Processed {report.n_fibers} fibers, {len(report.warp_events)} points outside "
                f"the deformation field, {len(report.voxelize_events)} points outside the label map")

    outputs = {}
    if options.fiber_output is not None:
        outputs['fibers'] = options.fiber_output
    if label_volume is not None:
        outputs['labels'] = options.voxelize

    # both outputs appear together or not at all
    try:
        with atomic_outputs(list(outputs.values())) as tmp_paths:
            tmp = dict(zip(outputs, tmp_paths))
            if 'fibers' in tmp:
                logger.debug("Output: %s", options.fiber_output)
                write_bundle(tmp['fibers'], output_bundle, atomic=False)
            if 'labels' in tmp:
                label_volume.save(tmp['labels'])
    except OSError as e:
        raise FiberProcessIOError(', '.join(outputs.values()),
                                  f"could not move outputs into place ({e})") from e

    for path in outputs.values():
        logger.info(f"Written {path}")

    return output_bundle, label_volume, report


def build_parser():
    """Command line parser of the ``fiberprocess`` tool."""
    parser = argparse.ArgumentParser(
        prog="fiberprocess",
        description="Warp fiber bundles, resample tensor statistics along them and voxelize them.",
    )
    parser.add_argument("fiber_file", nargs="?", default=None, help="DTI fiber file (.trk).")
    parser.add_argument("-o", "--fiber-output", dest="fiber_output", default=None,
                        help="Output fiber file. May be warped or updated with new data "
                             "depending on other options used.")

    field_group = parser.add_mutually_exclusive_group()
    field_group.add_argument("-H", "--h-field", dest="h_field", default=None,
                             help="HField (absolute destination coordinates) for warp and "
                                  "statistics lookup.")
    field_group.add_argument("--displacement-field", dest="displacement_field", default=None,
                             help="Displacement field (relative offsets in mm) for warp and "
                                  "statistics lookup.")
    parser.add_argument("--lps-field", dest="lps_field", action="store_true",
                        help="Deformation vectors are in ITK/ANTs LPS space and are flipped to RAS.")
    parser.add_argument("-n", "--no-warp", dest="no_warp", action="store_true",
                        help="Do not warp the geometry of the fibers, only obtain the new statistics.")
    parser.add_argument("-T", "--tensor-volume", dest="tensor_volume", default=None,
                        help="Interpolate tensor values from the given field.")
    parser.add_argument("--tensor-order", dest="tensor_order", choices=["lower", "upper"],
                        default="lower",
                        help="Component order of the tensor volume: 'lower' for NIfTI symmetric "
                             "matrices (xx, xy, yy, xz, yz, zz), 'upper' for xx, xy, xz, yy, yz, zz.")
    parser.add_argument("--no-data-change", dest="no_data_change", action="store_true",
                        help="Keep the input point data instead of resampling tensors.")
    parser.add_argument("-V", "--voxelize", default=None,
                        help="Voxelize fibers into a label map (.nii.gz for compressed output). "
                             "The tensor file must be specified to get the size, origin, "
                             "spacing of the image.")
    parser.add_argument("--voxelize-count-fibers", dest="voxelize_count_fibers", action="store_true",
                        help="Count fiber points per voxel instead of setting the label.")
    parser.add_argument("-l", "--voxel-label", dest="voxel_label", type=int, default=1,
                        help="Label for voxelized fibers (default: 1).")
    parser.add_argument("--coordinate-mode", dest="coordinate_mode",
                        choices=[m.value for m in CoordinateMode],
                        default=CoordinateMode.OBJECT_TRANSFORM.value,
                        help="How stored fiber positions map to world coordinates "
                             "(default: object-transform).")
    parser.add_argument("--n-jobs", dest="n_jobs", type=int, default=1,
                        help="Number of parallel jobs for fiber transformation (-1 for all CPUs).")
    parser.add_argument("-v", "--verbose", action="store_true", help="Produce verbose output.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv=None):
    """Entry point of the ``fiberprocess`` console script. Returns the exit code."""
    parser = build_parser()
    args = parser.parse_args(sys.argv[1:] if argv is None else argv)

    setup_logging('DEBUG' if args.verbose else 'INFO')

    if args.fiber_file is None:
        parser.print_help()
        logger.error("A fiber file has to be specified")
        return 1

    try:
        options = ProcessingOptions.from_args(args)
        process_and_save(options)
    except ValidationError as e:
        logger.error(str(e))
        return 1
    except FiberProcessIOError as e:
        logger.error(f"I/O error: {e}")
        return 1
    except TensorOutOfBoundsError as e:
        logger.error(str(e))
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
