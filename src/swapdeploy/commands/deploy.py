"""Deploy command with dependency injection.

Builds the orchestrator from configuration, diffs against the archives last
deployed for the package and applies the caller-level retry policies:

    --fallback-install       reinstall when a live swap fails
    --uninstall-on-conflict  uninstall then reinstall when the package
                             manager refuses an update (downgrade,
                             certificate mismatch, ...)
"""
import json
import sys
from dataclasses import dataclass
from typing import Optional

from swapdeploy.core import (
    ConsoleLogger,
    Logger,
    FileSystemService,
    ProcessRunner,
    TimeProvider,
    ToolLocator,
    RealFileSystemService,
    SubprocessRunner,
    SystemTimeProvider,
    SystemToolLocator,
)
from swapdeploy.deploy import (
    DeploymentHistory,
    DeploymentOutcome,
    DeviceChannel,
    DeviceChannelFactory,
    JsonWireAttacher,
    LiveRedefiner,
    OutcomeKind,
    SwapOrchestrator,
    requires_uninstall,
)
from swapdeploy.exceptions import RedefineError, SwapDeployError
from swapdeploy.units import (
    CachedUnitSplitter,
    ContentCache,
    PythonSourceSplitter,
    PythonStructureChecker,
    SqliteCacheBackend,
)
from swapdeploy.utils.config import DeployConfig, load_config


def setup_parser(parser):
    """Setup argument parser for deploy command"""
    parser.add_argument(
        'package_id',
        help='Application package name (e.g., com.example.app)'
    )
    parser.add_argument(
        'archives',
        nargs='+',
        help='Base archive followed by additional split archives'
    )
    parser.add_argument(
        '--device', '-d',
        help='Device serial, adb:serial or tcp://host:port (default: device.serial from config)'
    )
    parser.add_argument(
        '--config',
        help='Config file (default: $SWAPDEPLOY_CONFIG or ./swapdeploy.yaml)'
    )
    parser.add_argument(
        '--previous',
        nargs='+',
        help='Archives currently installed (default: last recorded deployment)'
    )
    parser.add_argument(
        '--force-reinstall',
        action='store_true',
        help='Reinstall without diffing'
    )
    parser.add_argument(
        '--uninstall-on-conflict',
        action='store_true',
        help='Uninstall and retry when the update is refused (wipes app data)'
    )
    parser.add_argument(
        '--fallback-install',
        action='store_true',
        help='Reinstall when a live swap fails'
    )
    parser.add_argument(
        '--no-history',
        action='store_true',
        help='Do not record this deployment as the new baseline'
    )
    parser.add_argument(
        '--json',
        action='store_true',
        help='Print the outcome as JSON'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Show debug output'
    )


@dataclass
class DeploySession:
    """Everything a deployment needs, wired from configuration."""
    orchestrator: SwapOrchestrator
    channel: DeviceChannel
    history: DeploymentHistory
    cache_backend: SqliteCacheBackend

    def close(self) -> None:
        self.cache_backend.close()


def build_session(
    config: DeployConfig,
    logger: Logger,
    filesystem: FileSystemService,
    process_runner: ProcessRunner,
    tool_locator: ToolLocator,
    device: Optional[str] = None
) -> DeploySession:
    """Wire channel, cache, splitter and redefiner from config.

    Raises:
        DeviceError: If the adb client cannot be found
        CacheError: If the cache database cannot be opened
        ValueError: If the device string is malformed
    """
    channel = DeviceChannelFactory.from_device_string(
        device or config.serial,
        process_runner,
        tool_locator,
        adb_path=config.adb_path,
        timeout=config.command_timeout_s
    )

    backend = SqliteCacheBackend(config.cache_path)
    splitter = CachedUnitSplitter(ContentCache(backend), PythonSourceSplitter())

    redefiner = None
    if config.live_swap_enabled:
        redefiner = LiveRedefiner(
            JsonWireAttacher(),
            config.debugger_endpoint,
            config.agent_path,
            filesystem,
            timeout=config.attach_timeout_s
        )
    else:
        logger.debug("No debugger endpoint configured, live swap disabled")

    orchestrator = SwapOrchestrator(
        channel,
        splitter,
        filesystem,
        logger,
        redefiner=redefiner,
        checker=PythonStructureChecker(),
        staging_dir=config.staging_dir,
        install_options=config.install_options,
        max_workers=config.max_workers
    )
    history = DeploymentHistory(config.history_dir, filesystem)
    return DeploySession(orchestrator, channel, history, backend)


def run_deploy(args, session: DeploySession, logger: Logger) -> DeploymentOutcome:
    """Deploy once, then apply the retry policies selected on the command line."""
    orchestrator = session.orchestrator
    previous = args.previous or session.history.previous(args.package_id)

    outcome = orchestrator.deploy(
        args.package_id, args.archives, previous=previous, force_reinstall=args.force_reinstall
    )

    if not outcome.succeeded and args.fallback_install and isinstance(outcome.error, RedefineError):
        logger.warning(f"Live swap failed ({outcome.error.kind}), falling back to reinstall")
        outcome = orchestrator.deploy(args.package_id, args.archives, force_reinstall=True)

    if (not outcome.succeeded and args.uninstall_on_conflict
            and outcome.install_status is not None and requires_uninstall(outcome.install_status)):
        logger.warning(f"{outcome.install_status.value}: uninstalling {args.package_id} and retrying")
        session.channel.uninstall(args.package_id)
        outcome = orchestrator.deploy(args.package_id, args.archives, force_reinstall=True)

    return outcome


def print_outcome(outcome: DeploymentOutcome, elapsed_s: float) -> None:
    """Human readable summary with per-task timings."""
    print()
    print(f"Result:   {outcome.kind.value.upper()}")
    print(f"Reason:   {outcome.reason}")
    if outcome.strategy:
        print(f"Strategy: {outcome.strategy.value}")
    if outcome.install_status:
        print(f"Status:   {outcome.install_status.value}")
    if outcome.error and outcome.error.suggestion:
        print(f"Hint:     {outcome.error.suggestion}")

    if outcome.metrics:
        print()
        print(f"{'Task':<48} {'State':<10} {'Time (ms)':>10}")
        print("-" * 70)
        for metric in outcome.metrics:
            duration = f"{metric.duration_ms:.1f}" if metric.duration_ms is not None else "-"
            print(f"{metric.name:<48} {metric.state.value:<10} {duration:>10}")

    print()
    print(f"Completed in {elapsed_s:.2f}s")


def record_history(args, session: DeploySession, outcome: DeploymentOutcome, logger: Logger) -> None:
    """
    Record the deployed archives as the next baseline.

    Only outcomes after which the installed package matches the archives
    count. A live swap changes the running process, not the package, so the
    baseline stays at the last install and the next run diffs against it.
    """
    if outcome.kind in (OutcomeKind.INSTALLED, OutcomeKind.SKIPPED):
        session.history.record(args.package_id, args.archives)
    elif outcome.kind == OutcomeKind.SWAPPED:
        logger.debug("Live swap leaves the installed package unchanged, history not updated")


def execute(
    args,
    filesystem: Optional[FileSystemService] = None,
    process_runner: Optional[ProcessRunner] = None,
    tool_locator: Optional[ToolLocator] = None,
    time_provider: Optional[TimeProvider] = None
):
    """Execute deploy command"""
    logger = ConsoleLogger(verbose=args.verbose, stream=sys.stderr if args.json else None)
    filesystem = filesystem or RealFileSystemService()
    time_provider = time_provider or SystemTimeProvider()
    started = time_provider.current_time()

    try:
        config = load_config(args.config)
        session = build_session(
            config,
            logger,
            filesystem,
            process_runner or SubprocessRunner(),
            tool_locator or SystemToolLocator(),
            device=args.device
        )
    except (SwapDeployError, ValueError) as e:
        logger.error(str(e))
        return 1

    try:
        outcome = run_deploy(args, session, logger)
        if not args.no_history:
            record_history(args, session, outcome, logger)
    except (SwapDeployError, ValueError) as e:
        logger.error(str(e))
        return 1
    finally:
        session.close()

    if args.json:
        print(json.dumps(outcome.to_dict(), indent=2))
    else:
        print_outcome(outcome, time_provider.current_time() - started)

    return 0 if outcome.succeeded else 1
