"""
Fiber Bundle Warping and Voxelization Package

Transforms tractography fiber bundles through deformation fields, resamples
diffusion tensors along the warped fibers (FA, MD, Frobenius norm,
eigenvalues) and rasterizes fibers into label volumes.
"""

__version__ = "1.0.0"
__author__ = "NeuroLib Team"
__license__ = "MIT"

from .bundle import Bundle, Fiber, FiberPoint
from .transform import CoordinateMode, GridGeometry, to_world, from_world
from .interpolation import sample_field
from .fields import (
    DeformationField,
    FieldKind,
    TensorField,
    read_deformation_field,
    read_tensor_field,
)
from .tensor_metrics import METRIC_NAMES, attribute_tensors, compute_tensor_metrics
from .streamline_processing import transform_fiber, warp_points
from .voxelize import LabelVolume, VoxelWriteMode
from .fiber_io import read_bundle, write_bundle
from .options import ProcessingOptions
from .validation import (
    FiberFileError,
    FieldFileError,
    OutOfBoundsEvent,
    TensorOutOfBoundsError,
    ValidationError,
    ValidationWarning,
)
from .main import ProcessingReport, process_and_save, process_bundle

__all__ = [
    # Data model
    'Bundle',
    'Fiber',
    'FiberPoint',

    # Coordinates and sampling
    'CoordinateMode',
    'GridGeometry',
    'to_world',
    'from_world',
    'sample_field',

    # Fields
    'DeformationField',
    'FieldKind',
    'TensorField',
    'read_deformation_field',
    'read_tensor_field',

    # Per-fiber processing
    'METRIC_NAMES',
    'attribute_tensors',
    'compute_tensor_metrics',
    'transform_fiber',
    'warp_points',

    # Voxelization
    'LabelVolume',
    'VoxelWriteMode',

    # I/O
    'read_bundle',
    'write_bundle',

    # Pipeline
    'ProcessingOptions',
    'ProcessingReport',
    'process_and_save',
    'process_bundle',

    # Errors
    'FiberFileError',
    'FieldFileError',
    'OutOfBoundsEvent',
    'TensorOutOfBoundsError',
    'ValidationError',
    'ValidationWarning',
]
