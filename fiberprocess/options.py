"""Run configuration, built once and passed to every stage."""

from dataclasses import dataclass
from typing import Optional

from .fields import FieldKind
from .transform import CoordinateMode
from .voxelize import VoxelWriteMode


@dataclass(frozen=True)
class ProcessingOptions:
    """
    Immutable configuration of one fiber processing run.

    Attributes
    ----------
    fiber_file : str
        Input fiber bundle.
    fiber_output : str, optional
        Output fiber bundle. Tensor attribution only happens when it is set.
    deformation_path : str, optional
        Deformation volume; ``None`` means no warp.
    deformation_kind : FieldKind
        How the deformation volume encodes its vectors.
    lps_field : bool
        Deformation vectors are in ITK/ANTs LPS space.
    no_warp : bool
        Keep the original fiber geometry in the output even when a
        deformation is given. Sampling still uses the warped positions.
    tensor_volume : str, optional
        Tensor volume to resample along fibers.
    tensor_order : {'lower', 'upper'}
        Component order of the tensor volume on disk.
    no_data_change : bool
        Keep the input point data instead of resampling tensors.
    voxelize : str, optional
        Output label volume; requires ``tensor_volume``.
    voxel_mode : VoxelWriteMode
    voxel_label : int
    coordinate_mode : CoordinateMode
    n_jobs : int
        Worker processes for per-fiber transformation (joblib convention,
        -1 for all CPUs).
    verbose : bool
    """

    fiber_file: str
    fiber_output: Optional[str] = None
    deformation_path: Optional[str] = None
    deformation_kind: FieldKind = FieldKind.DISPLACEMENT
    lps_field: bool = False
    no_warp: bool = False
    tensor_volume: Optional[str] = None
    tensor_order: str = "lower"
    no_data_change: bool = False
    voxelize: Optional[str] = None
    voxel_mode: VoxelWriteMode = VoxelWriteMode.OVERWRITE_LABEL
    voxel_label: int = 1
    coordinate_mode: CoordinateMode = CoordinateMode.OBJECT_TRANSFORM
    n_jobs: int = 1
    verbose: bool = False

    @property
    def attribute_tensors(self):
        """Whether tensors are resampled and scalar maps recomputed."""
        return (self.tensor_volume is not None and self.fiber_output is not None
                and not self.no_data_change)

    @classmethod
    def from_args(cls, args):
        """Build options from the parsed command line."""
        if args.h_field:
            deformation_path, kind = args.h_field, FieldKind.HFIELD
        elif args.displacement_field:
            deformation_path, kind = args.displacement_field, FieldKind.DISPLACEMENT
        else:
            deformation_path, kind = None, FieldKind.DISPLACEMENT

        return cls(
            fiber_file=args.fiber_file,
            fiber_output=args.fiber_output,
            deformation_path=deformation_path,
            deformation_kind=kind,
            lps_field=args.lps_field,
            no_warp=args.no_warp,
            tensor_volume=args.tensor_volume,
            tensor_order=args.tensor_order,
            no_data_change=args.no_data_change,
            voxelize=args.voxelize,
            voxel_mode=(VoxelWriteMode.ACCUMULATE_COUNT if args.voxelize_count_fibers
                        else VoxelWriteMode.OVERWRITE_LABEL),
            voxel_label=args.voxel_label,
            coordinate_mode=CoordinateMode(args.coordinate_mode),
            n_jobs=args.n_jobs,
            verbose=args.verbose,
        )
