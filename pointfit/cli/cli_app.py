#!/usr/bin/env python3
"""
Command Line Interface for pointfit
"""

import argparse
import sys

import numpy as np

from ..core.icp import IterativeClosestPoint, Metric, CorrespondencesType
from ..core.models import PlaneEstimator
from ..core.point_cloud import PointCloud
from ..core.ransac import RandomSampleConsensus
from ..config.settings import ConfigManager
from ..io.matrix_io import write_matrix, write_vector
from ..utils.logging import set_log_level
from ..utils.performance import performance_monitor
from ..utils.validation import validate_file_path, validate_point_cloud, validate_point_cloud_pair

METRIC_CHOICES = [m.value for m in Metric]
CORRESPONDENCE_CHOICES = [c.value for c in CorrespondencesType]


def create_parser():
    """Create command line argument parser"""
    parser = argparse.ArgumentParser(
        prog="pointfit",
        description="Rigid point cloud registration (ICP) and robust model fitting (RANSAC)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Point-to-plane ICP, write the aligned source and the 4x4 transform
  pointfit register source.ply target.ply -o aligned.ply --transform-out T.txt

  # Point-to-point ICP on text clouds with a larger search radius
  pointfit register source.txt target.txt --metric point_to_point --max-distance 0.5

  # Dominant plane of a scan
  pointfit fit-plane scan.ply --threshold 0.01 --inliers-out inliers.txt
        """
    )

    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    parser.add_argument("--quiet", "-q", action="store_true", help="Suppress progress output")
    parser.add_argument("--config", help="Configuration file")
    parser.add_argument("--preset", choices=["fast", "accurate", "robust"],
                        help="Use preset configuration")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # Registration
    reg = subparsers.add_parser("register", help="Rigidly align SOURCE onto TARGET")
    reg.add_argument("source", help="Source point cloud or mesh file")
    reg.add_argument("target", help="Target point cloud or mesh file")
    reg.add_argument("-o", "--output", help="Output file for the aligned source cloud")
    reg.add_argument("--transform-out", help="Write the 4x4 transform matrix to this file")
    reg.add_argument("--binary", action="store_true", help="Write the transform in binary matrix layout")
    reg.add_argument("--metric", choices=METRIC_CHOICES, help="Optimization metric")
    reg.add_argument("--correspondences", choices=CORRESPONDENCE_CHOICES,
                     help="Descriptor channels used for matching")
    reg.add_argument("--max-distance", type=float, help="Maximum correspondence distance")
    reg.add_argument("--fraction", type=float, help="Fraction of closest correspondences kept")
    reg.add_argument("--tolerance", type=float, help="Convergence tolerance")
    reg.add_argument("--max-iter", type=int, help="Maximum ICP iterations")
    reg.add_argument("--max-inner-iter", type=int, help="Linearized solver steps per iteration")

    # Plane fitting
    plane = subparsers.add_parser("fit-plane", help="Fit the dominant plane with RANSAC")
    plane.add_argument("cloud", help="Point cloud or mesh file")
    plane.add_argument("--threshold", type=float, help="Maximum inlier distance to the plane")
    plane.add_argument("--max-iter", type=int, help="Maximum RANSAC iterations")
    plane.add_argument("--target-inliers", type=int, help="Stop once this many inliers are found")
    plane.add_argument("--seed", type=int, help="Random seed for reproducible runs")
    plane.add_argument("--no-re-estimate", action="store_true", help="Skip the final refit on all inliers")
    plane.add_argument("--inliers-out", help="Write inlier indices to this file")
    plane.add_argument("--binary", action="store_true",
                       help="Write inlier indices in binary matrix layout (int64 payload)")

    return parser


def load_cloud(path, verbose=False):
    """Load and validate a point cloud, returning None on failure"""
    valid, message = validate_file_path(path)
    if not valid:
        print(f"Error: {message}")
        return None

    if verbose:
        print(f"Loading: {path}")
    try:
        cloud = PointCloud.from_file(path)
    except (ValueError, ImportError, OSError) as e:
        print(f"Error loading {path}: {e}")
        return None

    valid, message = validate_point_cloud(cloud)
    if not valid:
        print(f"Error: {path}: {message}")
        return None
    return cloud


def load_config_manager(args):
    config_manager = ConfigManager(args.config)
    if args.preset:
        config_manager.apply_preset(args.preset)
        if not args.quiet:
            print(f"Applied preset: {args.preset}")
    return config_manager


def run_register(args, config_manager):
    source = load_cloud(args.source, args.verbose)
    target = load_cloud(args.target, args.verbose)
    if source is None or target is None:
        return 1

    valid, message = validate_point_cloud_pair(source, target)
    if not valid:
        print(f"Error: {message}")
        return 1

    config = config_manager.get_registration_config()
    icp = IterativeClosestPoint.from_point_clouds(
        target, source,
        metric=Metric(args.metric) if args.metric else config.metric,
        correspondences_type=CorrespondencesType(args.correspondences) if args.correspondences
        else config.correspondences_type,
        config=config,
    )

    overrides = {
        "max_correspondence_distance": args.max_distance,
        "correspondences_fraction": args.fraction,
        "convergence_tolerance": args.tolerance,
        "max_iterations": args.max_iter,
        "max_optimization_step_iterations": args.max_inner_iter,
    }
    icp.configure(**{key: value for key, value in overrides.items() if value is not None})

    for adjustment in icp.adjustments:
        print(f"Note: {adjustment.setting} {adjustment.requested.value} -> {adjustment.effective.value}")

    with performance_monitor("registration", verbose=args.verbose) as monitor:
        transform = icp.get_transformation()
        monitor.record_metric("icp_iterations", icp.iteration_count)
        monitor.record_metric("correspondences", len(icp.get_correspondences()))
        monitor.record_metric("mean_correspondence_distance", icp.get_correspondences().mean_distance())

    if args.transform_out:
        write_matrix(args.transform_out, transform.as_matrix(), binary=args.binary)

    if args.output:
        try:
            source.transformed(transform).to_file(args.output)
        except (ValueError, ImportError, OSError) as e:
            print(f"Error: Failed to save aligned cloud: {e}")
            return 1

    if not args.quiet:
        residuals = icp.get_residuals()
        print("\n" + "="*50)
        print("REGISTRATION COMPLETE")
        print("="*50)
        print(f"Metric: {icp.metric.value}, correspondences: {icp.correspondences_type.value}")
        print(f"Iterations: {icp.iteration_count} ({icp.state.value})")
        print(f"Converged: {icp.has_converged()}")
        print(f"Correspondences: {len(icp.get_correspondences()):,}")
        print(f"Mean residual: {np.mean(residuals):.6g}")
        print("Transform:")
        print(np.array2string(transform.as_matrix(), precision=6, suppress_small=True))
        print("="*50)

    return 0


def run_fit_plane(args, config_manager):
    cloud = load_cloud(args.cloud, args.verbose)
    if cloud is None:
        return 1

    config = config_manager.get_ransac_config()
    overrides = {
        "sample_size": PlaneEstimator.sample_size,
        "max_inlier_residual": args.threshold,
        "max_iterations": args.max_iter,
        "target_inlier_count": args.target_inliers if args.target_inliers is not None else len(cloud),
        "seed": args.seed,
        "re_estimate": False if args.no_re_estimate else None,
    }
    ransac = RandomSampleConsensus(PlaneEstimator(cloud.points), config=config).configure(
        **{key: value for key, value in overrides.items() if value is not None})

    with performance_monitor("plane fitting", verbose=args.verbose) as monitor:
        result = ransac.get_estimation_results()
        monitor.record_metric("ransac_iterations", result.iterations)
        monitor.record_metric("inliers", result.num_inliers)

    if args.inliers_out:
        write_vector(args.inliers_out, result.inliers, binary=args.binary, dtype=np.int64)

    if not args.quiet:
        print("\n" + "="*50)
        print("PLANE FIT COMPLETE")
        print("="*50)
        print(f"Iterations: {result.iterations}")
        print(f"Inliers: {result.num_inliers:,} / {len(cloud):,}")
        if result.parameters is not None:
            n = result.parameters.normal
            print(f"Plane: {n[0]:.6f} x + {n[1]:.6f} y + {n[2]:.6f} z + {result.parameters.offset:.6f} = 0")
        else:
            print("No plane found")
        print("="*50)

    return 0 if result.parameters is not None else 1


def main(argv=None):
    """Main CLI entry point"""
    parser = create_parser()
    args = parser.parse_args(argv)

    config_manager = load_config_manager(args)
    if args.verbose:
        set_log_level("DEBUG")
    elif args.quiet:
        set_log_level("ERROR")
    else:
        set_log_level(config_manager.get("logging.level", "WARNING"))

    if not config_manager.validate_config():
        print("Error: invalid configuration")
        return 1

    if args.command == "register":
        return run_register(args, config_manager)
    return run_fit_plane(args, config_manager)


if __name__ == "__main__":
    sys.exit(main())
