"""
Immutable run parameters shared by the coordinator and every worker.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from common.errors import ConfigurationError
from common.profile import ConnectionProfile, resolve_topology
from configuration import (
    COMMIT_SETTLE_MS,
    DEFAULT_DURATION_SECONDS,
    DEFAULT_LEDGER_TYPE,
    DEFAULT_OPERATIONS_PER_TX,
    DEFAULT_PAYLOAD_SIZE,
    DEFAULT_PROCESSES,
    DEFAULT_TARGET_TPS,
    DEFAULT_WORKLOAD,
    MS_PER_SECOND,
    REPORT_PERIOD_MS,
    WARM_UP_OFFSET_MS,
)

logger = logging.getLogger(__name__)


class Workload(Enum):
    """Chaincode function driven by the workers. The value is the function name."""

    PUTSTATE = "putstate"
    GETSTATE = "getstate"
    MIX = "mix"
    JSON = "json"

    def build_args(self, key: str, num: int, size: int, population: Optional[int]) -> List[str]:
        """Chaincode arguments for one request."""
        if self is Workload.PUTSTATE:
            return [str(num), str(size), key]
        if self is Workload.GETSTATE:
            return [str(num), str(population or 0), key]
        return [str(num), str(size), key, str(population or 0)]


class Selection(Enum):
    """How a worker picks its endorsing peer or orderer."""

    FIRST = "first"
    BALANCE = "balance"


class FirstBlockPolicy(Enum):
    """Which early commit-monitor samples are dropped before measurement."""

    FIRST = "first"  # drop the first callback, use the run start as rate reference
    BEFORE_START = "before-start"  # drop every block observed before the run start
    NONE = "none"


def _parse_enum(enum_cls, value, option: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        choices = ", ".join(member.value for member in enum_cls)
        raise ConfigurationError(f"Invalid {option} {value!r} (choose from {choices})") from None


@dataclass(frozen=True)
class RunConfig:
    """Snapshot of everything a run needs. Times are in milliseconds."""

    profile: ConnectionProfile
    channel_id: str
    org_name: str
    processes: int = DEFAULT_PROCESSES
    target: float = DEFAULT_TARGET_TPS
    duration_ms: float = DEFAULT_DURATION_SECONDS * MS_PER_SECOND
    rampup_ms: float = 0.0
    workload: Workload = Workload.PUTSTATE
    num: int = DEFAULT_OPERATIONS_PER_TX
    size: int = DEFAULT_PAYLOAD_SIZE
    population: Optional[int] = None
    endorsing_orgs: Optional[Tuple[str, ...]] = None
    peer_selection: Selection = Selection.FIRST
    orderer_selection: Selection = Selection.FIRST
    committing_peer: Optional[str] = None
    logdir: Optional[str] = None
    grafana: Optional[str] = None
    ledger: str = DEFAULT_LEDGER_TYPE
    ledger_options: Dict[str, str] = field(default_factory=dict)
    period_ms: float = REPORT_PERIOD_MS
    warmup_ms: float = WARM_UP_OFFSET_MS
    settle_ms: float = COMMIT_SETTLE_MS
    first_block_policy: FirstBlockPolicy = FirstBlockPolicy.FIRST
    metrics_port: Optional[int] = None
    start_ms: Optional[float] = None
    delay_ms: float = 0.0

    @property
    def tps_per_process(self) -> float:
        return self.target / self.processes

    @property
    def interval_ms(self) -> float:
        """Pacing interval of one worker."""
        return MS_PER_SECOND / self.tps_per_process

    def worker_delay_ms(self, index: int) -> float:
        """Linear ramp-up stagger of worker ``index``."""
        return index * self.rampup_ms / self.processes

    def for_worker(self, index: int, start_ms: float) -> "RunConfig":
        """Copy sent to worker ``index``: same parameters, own start delay."""
        return replace(self, start_ms=start_ms, delay_ms=self.worker_delay_ms(index))

    def describe(self) -> str:
        return (
            f"Target:{self.target:g} Processes:{self.processes} Duration:{self.duration_ms:g} "
            f"Type:{self.workload.value} Num:{self.num} Size:{self.size}"
        )


def parse_ledger_options(pairs: Optional[Sequence[str]]) -> Dict[str, str]:
    """Turn ``key=value`` strings into a dict."""
    options = {}
    for pair in pairs or ():
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ConfigurationError(f"Invalid ledger option {pair!r}, expected key=value")
        options[key.strip()] = value.strip()
    return options


def build_run_config(
    profile: ConnectionProfile,
    channel_id: Optional[str] = None,
    org_name: Optional[str] = None,
    processes: int = DEFAULT_PROCESSES,
    target: float = DEFAULT_TARGET_TPS,
    duration_seconds: float = DEFAULT_DURATION_SECONDS,
    rampup_seconds: Optional[float] = None,
    workload=DEFAULT_WORKLOAD,
    num: int = DEFAULT_OPERATIONS_PER_TX,
    size: int = DEFAULT_PAYLOAD_SIZE,
    population: Optional[int] = None,
    endorsing_orgs: Optional[Sequence[str]] = None,
    peer_selection=Selection.FIRST,
    orderer_selection=Selection.FIRST,
    committing_peer: Optional[str] = None,
    logdir: Optional[str] = None,
    grafana: Optional[str] = None,
    ledger: str = DEFAULT_LEDGER_TYPE,
    ledger_options: Optional[Mapping[str, str]] = None,
    period_ms: float = REPORT_PERIOD_MS,
    warmup_ms: float = WARM_UP_OFFSET_MS,
    settle_ms: float = COMMIT_SETTLE_MS,
    first_block_policy=FirstBlockPolicy.FIRST,
    metrics_port: Optional[int] = None,
) -> RunConfig:
    """Validate the run parameters against the profile and build the RunConfig.

    When ``rampup_seconds`` is omitted the ramp-up window is one pacing interval.

    Raises:
        ConfigurationError: If any parameter or the topology is invalid
    """
    if processes is None or processes < 1:
        raise ConfigurationError(f"processes must be at least 1, got {processes}")
    if target is None or target <= 0:
        raise ConfigurationError(f"target must be positive, got {target}")
    if duration_seconds is None or duration_seconds <= 0:
        raise ConfigurationError(f"duration must be positive, got {duration_seconds}")
    if rampup_seconds is not None and rampup_seconds < 0:
        raise ConfigurationError(f"rampup must not be negative, got {rampup_seconds}")
    if num < 1:
        raise ConfigurationError(f"num must be at least 1, got {num}")
    if size < 0:
        raise ConfigurationError(f"size must not be negative, got {size}")
    if population is not None and population < 0:
        raise ConfigurationError(f"population must not be negative, got {population}")
    if period_ms <= 0:
        raise ConfigurationError(f"report period must be positive, got {period_ms}")
    if warmup_ms < 0 or settle_ms < 0:
        raise ConfigurationError("warm-up and settle delays must not be negative")

    topology = resolve_topology(profile, channel_id, org_name, endorsing_orgs)

    if committing_peer is not None and committing_peer not in profile.channel(topology.channel_id).peer_names:
        raise ConfigurationError(f"{committing_peer}: not a peer of channel {topology.channel_id}")

    interval_ms = MS_PER_SECOND / (target / processes)
    rampup_ms = interval_ms if rampup_seconds is None else rampup_seconds * MS_PER_SECOND

    config = RunConfig(
        profile=profile,
        channel_id=topology.channel_id,
        org_name=topology.org_name,
        processes=processes,
        target=target,
        duration_ms=duration_seconds * MS_PER_SECOND,
        rampup_ms=rampup_ms,
        workload=_parse_enum(Workload, workload, "workload type"),
        num=num,
        size=size,
        population=population,
        endorsing_orgs=topology.endorsing_orgs,
        peer_selection=_parse_enum(Selection, peer_selection, "peer selection"),
        orderer_selection=_parse_enum(Selection, orderer_selection, "orderer selection"),
        committing_peer=committing_peer,
        logdir=logdir,
        grafana=grafana,
        ledger=ledger,
        ledger_options=dict(ledger_options or {}),
        period_ms=period_ms,
        warmup_ms=warmup_ms,
        settle_ms=settle_ms,
        first_block_policy=_parse_enum(FirstBlockPolicy, first_block_policy, "first block policy"),
        metrics_port=metrics_port,
    )
    logger.info(
        f"Run config: {config.describe()} channel={config.channel_id} org={config.org_name} "
        f"interval={config.interval_ms:.2f}ms rampup={config.rampup_ms:.0f}ms"
    )
    return config
