import os
import sys
import logging
import argparse

# Required: Use uvloop for the coordinator's event loop
import uvloop

# Add the current directory to Python path for imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from configuration import (
    COMMIT_SETTLE_MS, DEFAULT_DURATION_SECONDS, DEFAULT_LEDGER_TYPE, DEFAULT_OPERATIONS_PER_TX,
    DEFAULT_PAYLOAD_SIZE, DEFAULT_PROCESSES, DEFAULT_PROFILE_PATH, DEFAULT_TARGET_TPS,
    DEFAULT_WORKLOAD, LOG_LEVEL, REPORT_PERIOD_MS, WARM_UP_OFFSET_MS,
)
from common.errors import BenchmarkError
from common.run_config import FirstBlockPolicy, Selection, Workload

# Set up logging (only if not already configured)
if not logging.root.handlers:
    logging.basicConfig(level=LOG_LEVEL, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def _comma_list(value):
    names = [name.strip() for name in value.split(',') if name.strip()]
    if not names:
        raise argparse.ArgumentTypeError("expected a comma-separated list of organizations")
    return names


class CcperfCLI:
    """CLI interface for the chaincode performance benchmark."""

    def __init__(self):
        self.parser = self._create_parser()

    def _create_parser(self):
        """Create the main argument parser."""
        parser = argparse.ArgumentParser(
            description='Chaincode performance benchmark',
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Examples:
  # 100 tx/s from 4 processes for 5 minutes, commits observed on peer0.org1.example.com
  python cli.py run --processes 4 --target 100 --duration 300 \\
      --committing-peer peer0.org1.example.com --logdir logs/run1

  # Read workload over 10000 pre-populated keys, spreading workers over peers and orderers
  python cli.py run --type getstate --population 10000 --peer-selection balance --orderer-selection balance
            """
        )

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        run_parser = subparsers.add_parser('run', help='Run a benchmark')
        run_parser.add_argument('--logdir', type=str, default=None,
                                help='Directory name where log files are stored')
        run_parser.add_argument('--processes', type=int, default=DEFAULT_PROCESSES,
                                help=f'Number of processes to be launched (default: {DEFAULT_PROCESSES})')
        run_parser.add_argument('--profile', type=str, default=DEFAULT_PROFILE_PATH,
                                help=f'Connection profile (default: {DEFAULT_PROFILE_PATH})')
        run_parser.add_argument('--channel-id', '--channelID', dest='channel_id', type=str, default=None,
                                help='Channel name (default: first channel of the profile)')
        run_parser.add_argument('--target', type=float, default=DEFAULT_TARGET_TPS,
                                help=f'Target input TPS across all processes (default: {DEFAULT_TARGET_TPS:g})')
        run_parser.add_argument('--rampup', type=float, default=None,
                                help='Rampup in seconds (default: one request interval)')
        run_parser.add_argument('--duration', type=float, default=DEFAULT_DURATION_SECONDS,
                                help=f'Duration in seconds (default: {DEFAULT_DURATION_SECONDS:g})')
        run_parser.add_argument('--org', type=str, default=None,
                                help='Organization name (default: first endorsing organization)')
        run_parser.add_argument('--type', type=str, default=DEFAULT_WORKLOAD,
                                choices=[w.value for w in Workload],
                                help=f'Type of workload (default: {DEFAULT_WORKLOAD})')
        run_parser.add_argument('--num', type=int, default=DEFAULT_OPERATIONS_PER_TX,
                                help=f'Number of operations per transaction (default: {DEFAULT_OPERATIONS_PER_TX})')
        run_parser.add_argument('--size', type=int, default=DEFAULT_PAYLOAD_SIZE,
                                help=f'Payload size of a PutState call in bytes (default: {DEFAULT_PAYLOAD_SIZE})')
        run_parser.add_argument('--population', type=int, default=None,
                                help='Number of prepopulated key-values')
        run_parser.add_argument('--committing-peer', type=str, default=None,
                                help='Peer name whose commit events are monitored')
        run_parser.add_argument('--endorsing-orgs', type=_comma_list, default=None,
                                help='Comma-separated list of organizations')
        run_parser.add_argument('--peer-selection', type=str, default=Selection.FIRST.value,
                                choices=[s.value for s in Selection],
                                help='Endorsing peer selection method (default: first)')
        run_parser.add_argument('--orderer-selection', type=str, default=Selection.FIRST.value,
                                choices=[s.value for s in Selection],
                                help='Orderer selection method (default: first)')
        run_parser.add_argument('--grafana', type=str, default=None,
                                help='Grafana annotations endpoint URL')
        run_parser.add_argument('--ledger', type=str, default=DEFAULT_LEDGER_TYPE,
                                help=f'Ledger backend: simulated or package.module:ClassName (default: {DEFAULT_LEDGER_TYPE})')
        run_parser.add_argument('--ledger-option', action='append', default=[], metavar='KEY=VALUE',
                                help='Ledger backend option, may be repeated')
        run_parser.add_argument('--period', type=float, default=REPORT_PERIOD_MS,
                                help=f'Report window in milliseconds (default: {REPORT_PERIOD_MS:g})')
        run_parser.add_argument('--warmup', type=float, default=WARM_UP_OFFSET_MS,
                                help=f'Delay before the first request in milliseconds (default: {WARM_UP_OFFSET_MS:g})')
        run_parser.add_argument('--settle', type=float, default=COMMIT_SETTLE_MS,
                                help=f'Commit settle delay in milliseconds (default: {COMMIT_SETTLE_MS:g})')
        run_parser.add_argument('--first-block-policy', type=str, default=FirstBlockPolicy.FIRST.value,
                                choices=[p.value for p in FirstBlockPolicy],
                                help='Which early blocks are discarded from commit statistics (default: first)')
        run_parser.add_argument('--metrics-port', type=int, default=None,
                                help='Expose live commit metrics for Prometheus on this port')

        return parser

    def build_config(self, args):
        """Load the connection profile and validate the run parameters."""
        from common.profile import load_connection_profile
        from common.run_config import build_run_config, parse_ledger_options

        profile = load_connection_profile(args.profile)
        return build_run_config(
            profile,
            channel_id=args.channel_id,
            org_name=args.org,
            processes=args.processes,
            target=args.target,
            duration_seconds=args.duration,
            rampup_seconds=args.rampup,
            workload=args.type,
            num=args.num,
            size=args.size,
            population=args.population,
            endorsing_orgs=args.endorsing_orgs,
            peer_selection=args.peer_selection,
            orderer_selection=args.orderer_selection,
            committing_peer=args.committing_peer,
            logdir=args.logdir,
            grafana=args.grafana,
            ledger=args.ledger,
            ledger_options=parse_ledger_options(args.ledger_option),
            period_ms=args.period,
            warmup_ms=args.warmup,
            settle_ms=args.settle,
            first_block_policy=args.first_block_policy,
            metrics_port=args.metrics_port,
        )

    async def run_benchmark(self, config):
        """Run the benchmark and print the report."""
        from common.coordinator import Coordinator

        logger.info("=== Chaincode Benchmark ===")

        report = await Coordinator(config).run_benchmark()
        print(report.format(), flush=True)

        if not report.ok:
            for failure in report.failures:
                logger.error(failure)
            return 1
        return 0

    def run(self, args=None):
        """Run the CLI with the given arguments."""
        if args is None:
            args = sys.argv[1:]

        parsed_args = self.parser.parse_args(args)

        if not parsed_args.command:
            self.parser.print_help()
            return 1

        try:
            if parsed_args.command == 'run':
                config = self.build_config(parsed_args)
                return uvloop.run(self.run_benchmark(config))
            else:
                logger.error(f"Unknown command: {parsed_args.command}")
                return 1

        except KeyboardInterrupt:
            logger.info("Operation interrupted by user")
            return 1
        except BenchmarkError as e:
            logger.error(f"{type(e).__name__}: {e}")
            return 1


def main():
    """Main entry point."""
    cli = CcperfCLI()
    sys.exit(cli.run())


if __name__ == '__main__':
    main()
