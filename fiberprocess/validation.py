#!/usr/bin/env python
"""
Validation and Error Handling for the Fiber Processing Pipeline
"""

import os
import warnings
import logging
from collections import namedtuple
from typing import Optional

import numpy as np


class ValidationError(Exception):
    """Configuration error: missing input, unreadable file or incompatible options."""
    pass


class ValidationWarning(UserWarning):
    """Custom warning for validation issues that don't require stopping."""
    pass


class FiberProcessIOError(Exception):
    """Failure to read or write one of the pipeline's files."""

    def __init__(self, path, message):
        super().__init__(str(path), message)
        self.path = str(path)
        self.message = message

    def __str__(self):
        return f"{self.path}: {self.message}"


class FiberFileError(FiberProcessIOError):
    """Fiber bundle file could not be read or written."""
    pass


class FieldFileError(FiberProcessIOError):
    """Deformation, tensor or label volume could not be read or written."""
    pass


class TensorOutOfBoundsError(Exception):
    """A fiber point fell outside the tensor volume during resampling."""

    def __init__(self, fiber_id, point_index, index):
        index = tuple(float(v) for v in index)
        # args keep the constructor signature so the error survives pickling
        super().__init__(fiber_id, point_index, index)
        self.fiber_id = fiber_id
        self.point_index = point_index
        self.index = index

    def __str__(self):
        return (f"Fiber {self.fiber_id} point {self.point_index} maps to tensor index "
                f"{tuple(round(v, 4) for v in self.index)}, outside the tensor volume. "
                f"The tensor volume has to cover the fiber domain.")


class OutOfBoundsEvent(namedtuple('OutOfBoundsEvent', 'stage fiber_id point_index index')):
    """
    Recoverable per-point bounds failure.

    ``stage`` is ``'warp'`` (point kept at its unwarped position) or
    ``'voxelize'`` (voxel write skipped). ``index`` is the continuous index
    for warping and the rounded voxel index for voxelization.
    """

    __slots__ = ()

    def describe(self):
        index = tuple(round(float(v), 4) if self.stage == 'warp' else int(v) for v in self.index)
        if self.stage == 'warp':
            return (f"Fiber {self.fiber_id} point {self.point_index} is outside the deformation "
                    f"field (index {index}); original position will be used")
        return (f"Fiber {self.fiber_id} point {self.point_index}: index {index} "
                f"not in label image; ignoring")


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(log_level: str = 'INFO') -> logging.Logger:
    """Set up logging for the pipeline and return the package logger."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format=LOG_FORMAT
    )
    logging.captureWarnings(True)
    logger = logging.getLogger('fiberprocess')
    logger.setLevel(getattr(logging, log_level.upper()))
    return logger


def validate_file_exists(file_path: Optional[str], file_type: str = "file") -> str:
    """
    Validate that a file exists and is accessible.

    Args:
        file_path: Path to the file
        file_type: Type of file for error messages

    Returns:
        Absolute path to the file

    Raises:
        ValidationError: If file doesn't exist or isn't accessible
    """
    if not file_path:
        raise ValidationError(f"{file_type} path cannot be empty")

    abs_path = os.path.abspath(file_path)

    if not os.path.exists(abs_path):
        raise ValidationError(f"{file_type} not found: {abs_path}")

    if not os.path.isfile(abs_path):
        raise ValidationError(f"Path is not a file: {abs_path}")

    if not os.access(abs_path, os.R_OK):
        raise ValidationError(f"{file_type} is not readable: {abs_path}")

    return abs_path


def validate_output_path(file_path: str, file_type: str = "output file") -> str:
    """
    Validate that an output file can be created.

    The parent directory must already exist and be writable; nothing is
    created here so that a failed run leaves the filesystem untouched.
    """
    if not file_path:
        raise ValidationError(f"{file_type} path cannot be empty")

    abs_path = os.path.abspath(file_path)
    parent = os.path.dirname(abs_path)

    if not os.path.isdir(parent):
        raise ValidationError(f"Directory for {file_type} not found: {parent}")

    if not os.access(parent, os.W_OK):
        raise ValidationError(f"Directory for {file_type} is not writable: {parent}")

    if os.path.isdir(abs_path):
        raise ValidationError(f"{file_type} is a directory: {abs_path}")

    return abs_path


FIBER_EXTENSIONS = ('.trk',)
LABEL_EXTENSIONS = ('.nii', '.nii.gz')


def validate_extension(file_path: str, extensions, file_type: str = "output file") -> str:
    """
    Validate that a path carries one of the given extensions (case-insensitive).

    Raises:
        ValidationError: If the extension is not supported
    """
    if not str(file_path).lower().endswith(tuple(extensions)):
        raise ValidationError(
            f"Unsupported {file_type} format: {file_path} (expected {', '.join(extensions)})"
        )
    return file_path


def validate_voxel_label(voxel_label) -> int:
    """Validate the label written into voxelized fibers."""
    try:
        label = int(voxel_label)
    except (ValueError, TypeError):
        raise ValidationError(f"Voxel label must be an integer: {voxel_label}")

    if label != voxel_label:
        raise ValidationError(f"Voxel label must be an integer: {voxel_label}")

    limits = np.iinfo(np.int32)
    if not limits.min <= label <= limits.max:
        raise ValidationError(
            f"Voxel label {label} does not fit the int32 label map "
            f"[{limits.min}, {limits.max}]"
        )

    if label == 0:
        warnings.warn("Voxel label 0 is the background value; voxelized fibers "
                      "will be invisible in the label map", ValidationWarning)

    return label


def validate_options(options) -> None:
    """
    Check a set of processing options for missing inputs and conflicting flags.

    Args:
        options: ``ProcessingOptions`` instance

    Raises:
        ValidationError: If the combination cannot run
    """
    validate_file_exists(options.fiber_file, "Fiber file")

    if options.deformation_path is not None:
        validate_file_exists(options.deformation_path, "Deformation field")

    if options.tensor_volume is not None:
        validate_file_exists(options.tensor_volume, "Tensor volume")

    if options.voxelize is not None and options.tensor_volume is None:
        raise ValidationError(
            "Must specify tensor file to copy image metadata for fiber voxelize."
        )

    if options.fiber_output is not None:
        validate_output_path(options.fiber_output, "fiber output")
        validate_extension(options.fiber_output, FIBER_EXTENSIONS, "fiber output")

    if options.voxelize is not None:
        validate_output_path(options.voxelize, "label volume")
        validate_extension(options.voxelize, LABEL_EXTENSIONS, "label volume")

    if options.tensor_order not in ("lower", "upper"):
        raise ValidationError(
            f"Tensor order must be 'lower' or 'upper', got {options.tensor_order!r}"
        )

    validate_voxel_label(options.voxel_label)

    if options.n_jobs == 0:
        raise ValidationError("n_jobs cannot be 0")

    if options.fiber_output is None and options.voxelize is None:
        warnings.warn("Neither a fiber output nor a label volume was requested; "
                      "the run will produce no files", ValidationWarning)
