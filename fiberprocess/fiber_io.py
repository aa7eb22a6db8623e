"""
Reading and writing fiber bundles as TrackVis (.trk) files.

A bundle read from disk stores its positions in the file's voxel frame, with
``transform`` set to the header's ``voxel_to_rasmm`` and ``spacing`` to its
``voxel_sizes``. Per-point tensors, scalar fields, radius and color travel as
TRK per-point data; fiber identifiers as the ``fiber_id`` per-streamline
property.
"""

import contextlib
import logging
import os
import tempfile
import warnings
from pathlib import Path

import numpy as np
import nibabel as nib
from nibabel.affines import apply_affine
from nibabel.orientations import aff2axcodes
from nibabel.streamlines import Tractogram, TrkFile
from nibabel.streamlines.header import Field
from nibabel.streamlines.tractogram_file import DataError, HeaderError

from .bundle import Bundle, Fiber
from .validation import FiberFileError, ValidationWarning

logger = logging.getLogger(__name__)

TENSOR_KEY = 'tensor'
RADIUS_KEY = 'radius'
COLOR_KEY = 'color'
FIBER_ID_KEY = 'fiber_id'

_READ_ERRORS = (OSError, EOFError, ValueError, DataError, HeaderError)


def _temporary_sibling(path):
    path = Path(path)
    suffixes = path.suffixes
    suffix = ''.join(suffixes[-2:]) if suffixes and suffixes[-1] == '.gz' else path.suffix
    fd, tmp_path = tempfile.mkstemp(suffix=suffix, prefix=f'.{path.stem}-', dir=path.parent or '.')
    os.close(fd)
    return tmp_path


def _default_file_mode():
    # mkstemp creates 0600 files; give outputs the mode open() would
    umask = os.umask(0)
    os.umask(umask)
    return 0o666 & ~umask


@contextlib.contextmanager
def atomic_outputs(paths):
    """
    Yield temporary paths next to ``paths`` and move them into place together.

    The temporary files keep the extension of their target so that format
    detection by extension still works. Nothing is moved unless the block
    completes, so a failure while writing any output leaves none of them
    behind. Temporary files are removed on every exit path.
    """
    paths = [Path(p) for p in paths]
    tmp_paths = []
    try:
        for path in paths:
            tmp_paths.append(_temporary_sibling(path))
        yield list(tmp_paths)
        mode = _default_file_mode()
        for tmp_path, path in zip(tmp_paths, paths):
            os.chmod(tmp_path, mode)
            os.replace(tmp_path, path)
    finally:
        for tmp_path in tmp_paths:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)


@contextlib.contextmanager
def atomic_output(path):
    """Single-file :func:`atomic_outputs`: yield one temporary path for ``path``."""
    with atomic_outputs([path]) as (tmp_path,):
        yield tmp_path


def read_bundle(path):
    """
    Load a TRK file as a ``Bundle``.

    Parameters
    ----------
    path : str
        Path to a .trk file.

    Returns
    -------
    Bundle

    Raises
    ------
    FiberFileError
        If the file is missing, not a TRK file, or corrupt.
    """
    if nib.streamlines.detect_format(str(path)) is not TrkFile:
        raise FiberFileError(path, "unsupported fiber format, expected a .trk file")

    try:
        trk = nib.streamlines.load(str(path))
    except _READ_ERRORS as e:
        raise FiberFileError(path, f"could not read fiber file ({e})") from e

    header = trk.header
    voxel_to_rasmm = np.asarray(header[Field.VOXEL_TO_RASMM], dtype=np.float64)
    rasmm_to_voxel = np.linalg.inv(voxel_to_rasmm)
    tractogram = trk.tractogram

    point_keys = list(tractogram.data_per_point.keys())
    for key in point_keys:
        if key in (TENSOR_KEY, RADIUS_KEY, COLOR_KEY):
            continue
        if tractogram.data_per_point[key].common_shape != (1,):
            warnings.warn(f"Skipping multi-valued per-point field '{key}' in {path}", ValidationWarning)

    fiber_ids = None
    if FIBER_ID_KEY in tractogram.data_per_streamline:
        fiber_ids = np.asarray(tractogram.data_per_streamline[FIBER_ID_KEY]).reshape(-1)

    fibers = []
    for i, streamline in enumerate(tractogram.streamlines):
        data = {key: np.asarray(tractogram.data_per_point[key][i], dtype=np.float64)
                for key in point_keys}
        scalars = {key: values[:, 0] for key, values in data.items()
                   if key not in (TENSOR_KEY, RADIUS_KEY, COLOR_KEY) and values.shape[1] == 1}
        fibers.append(Fiber(
            apply_affine(rasmm_to_voxel, np.asarray(streamline, dtype=np.float64)),
            tensors=data.get(TENSOR_KEY),
            scalars=scalars,
            radius=data[RADIUS_KEY][:, 0] if RADIUS_KEY in data else None,
            color=data.get(COLOR_KEY),
            identifier=int(fiber_ids[i]) if fiber_ids is not None else i + 1,
        ))

    try:
        bundle = Bundle(
            fibers,
            spacing=header[Field.VOXEL_SIZES],
            transform=voxel_to_rasmm,
            identifier=Path(path).name.split('.')[0],
            dimensions=header[Field.DIMENSIONS],
        )
    except ValueError as e:
        raise FiberFileError(path, f"invalid bundle geometry ({e})") from e

    logger.debug("Read %d fibers (%d points) from %s", len(bundle), bundle.n_points, path)
    return bundle


def _collect_point_data(bundle):
    """Gather per-point arrays with the same keys for every fiber."""
    fibers = bundle.fibers
    if not fibers:
        return {}

    data = {}
    has_tensors = [f.tensors is not None for f in fibers]
    if any(has_tensors):
        if not all(has_tensors):
            raise ValueError("either every fiber or no fiber must carry tensors")
        data[TENSOR_KEY] = [f.tensors for f in fibers]

    names = list(fibers[0].scalars)
    for fiber in fibers:
        if set(fiber.scalars) != set(names):
            raise ValueError(f"fiber {fiber.identifier} has scalar fields {sorted(fiber.scalars)}, "
                             f"expected {sorted(names)}")
    for name in names:
        if name in (TENSOR_KEY, RADIUS_KEY, COLOR_KEY):
            raise ValueError(f"scalar field name '{name}' is reserved")
        data[name] = [f.scalars[name][:, None] for f in fibers]

    if all(f.radius is not None for f in fibers):
        data[RADIUS_KEY] = [f.radius[:, None] for f in fibers]
    if all(f.color is not None for f in fibers):
        data[COLOR_KEY] = [f.color for f in fibers]
    return data


def write_bundle(path, bundle, atomic=True):
    """
    Save a ``Bundle`` as a TRK file.

    Positions are written through each fiber's object-to-world transform;
    the bundle transform, spacing and dimensions go into the TRK header.

    Parameters
    ----------
    path : str
        Destination .trk file.
    bundle : Bundle
    atomic : bool
        Write through a temporary sibling file so that ``path`` appears only
        once it has been written completely. Callers that already write into
        a temporary path (see :func:`atomic_outputs`) pass False.

    Raises
    ------
    FiberFileError
        If the bundle cannot be represented as TRK or the file cannot be
        written.
    """
    try:
        point_data = _collect_point_data(bundle)
    except ValueError as e:
        raise FiberFileError(path, f"cannot store bundle as TRK ({e})") from e

    streamlines = [apply_affine(bundle.fiber_transform(f), f.positions) for f in bundle.fibers]
    fiber_ids = np.array([[f.identifier if f.identifier is not None else i + 1]
                          for i, f in enumerate(bundle.fibers)], dtype=np.float32).reshape(-1, 1)

    tractogram = Tractogram(
        streamlines,
        data_per_streamline={FIBER_ID_KEY: fiber_ids} if bundle.fibers else {},
        data_per_point=point_data,
        affine_to_rasmm=np.eye(4),
    )
    header = {
        Field.VOXEL_TO_RASMM: bundle.transform.astype(np.float32),
        Field.VOXEL_SIZES: bundle.spacing.astype(np.float32),
        Field.DIMENSIONS: bundle.dimensions.astype(np.int16),
        Field.VOXEL_ORDER: ''.join(aff2axcodes(bundle.transform)),
    }

    try:
        if atomic:
            with atomic_output(path) as tmp_path:
                TrkFile(tractogram, header=header).save(tmp_path)
        else:
            TrkFile(tractogram, header=header).save(str(path))
    except (OSError, ValueError, DataError, HeaderError) as e:
        raise FiberFileError(path, f"could not write fiber file ({e})") from e

    logger.info("Saved %d fibers => %s", len(bundle), path)
