"""Clean unit cache and deployment history command"""
from pathlib import Path

from swapdeploy.core import RealFileSystemService
from swapdeploy.deploy import DeploymentHistory
from swapdeploy.exceptions import SwapDeployError
from swapdeploy.units import SqliteCacheBackend
from swapdeploy.utils.config import load_config


def setup_parser(parser):
    """Setup argument parser for clean command"""
    parser.add_argument(
        '--cache',
        action='store_true',
        help='Clean only the code unit cache'
    )
    parser.add_argument(
        '--history',
        action='store_true',
        help='Clean only the deployment history'
    )
    parser.add_argument(
        '--package',
        help='Forget the deployment history of one package only'
    )
    parser.add_argument(
        '--all',
        action='store_true',
        help='Clean everything (default if no option specified)'
    )
    parser.add_argument(
        '--config',
        help='Config file (default: $SWAPDEPLOY_CONFIG or ./swapdeploy.yaml)'
    )


def execute(args):
    """Execute clean command"""
    # Default to --all if no specific option given
    if not args.cache and not args.history and not args.package:
        args.all = True

    try:
        config = load_config(args.config)
    except SwapDeployError as e:
        print(f"Error: {e}")
        return 1

    cleaned_items = []

    # Clean unit cache
    if args.cache or args.all:
        print("Cleaning unit cache...")
        if Path(config.cache_path).exists():
            try:
                backend = SqliteCacheBackend(config.cache_path)
                try:
                    backend.clear()
                finally:
                    backend.close()
                cleaned_items.append(f"Unit cache ({config.cache_path})")
            except SwapDeployError as e:
                print(f"Warning: Could not clean unit cache: {e}")

    # Clean deployment history
    if args.history or args.package or args.all:
        print("Cleaning deployment history...")
        history = DeploymentHistory(config.history_dir, RealFileSystemService())
        try:
            if args.package:
                if history.forget(args.package):
                    cleaned_items.append(f"Deployment history of {args.package}")
            else:
                count = history.forget_all()
                if count:
                    cleaned_items.append(f"Deployment history ({count} package(s))")
        except (OSError, ValueError) as e:
            print(f"Warning: Could not clean deployment history: {e}")

    # Report what was cleaned
    if cleaned_items:
        print("\nCleaned:")
        for item in cleaned_items:
            print(f"  ✓ {item}")
        print("\nDone!")
        return 0
    else:
        print("Nothing to clean.")
        return 0
