"""
swapdeploy CLI - Incremental deployment and live code swap

Installs or updates an application on a device with as little transfer as
possible, redefining modified code in the running process when the change
allows it.
"""
import argparse
import logging
import sys

__version__ = "0.1.0"


def main():
    """Main CLI entry point"""
    from swapdeploy.commands import deploy, inspect, clean

    parser = argparse.ArgumentParser(
        prog='swapdeploy',
        description='swapdeploy: incremental deployment and live code swap',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  swapdeploy deploy com.example.app app.apk           # Deploy (swap if possible)
  swapdeploy deploy com.example.app base.apk split.apk --device emulator-5554
  swapdeploy deploy com.example.app app.apk --force-reinstall
  swapdeploy inspect app.apk --units                  # Show entries and code units
  swapdeploy clean --cache                            # Drop the code unit cache
        '''
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    # Deploy command
    deploy_parser = subparsers.add_parser('deploy', help='Deploy archives to a device')
    deploy.setup_parser(deploy_parser)

    # Inspect command
    inspect_parser = subparsers.add_parser('inspect', help='Inspect an archive')
    inspect.setup_parser(inspect_parser)

    # Clean command
    clean_parser = subparsers.add_parser('clean', help='Clean cache/history')
    clean.setup_parser(clean_parser)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if getattr(args, 'verbose', False) else logging.WARNING,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    # Dispatch to command handler
    try:
        if args.command == 'deploy':
            sys.exit(deploy.execute(args))
        elif args.command == 'inspect':
            sys.exit(inspect.execute(args))
        elif args.command == 'clean':
            sys.exit(clean.execute(args))
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()
