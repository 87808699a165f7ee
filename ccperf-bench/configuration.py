"""
Configuration constants for the chaincode performance benchmark.

This module contains all configuration parameters including:
- Connection profile and ledger backend defaults
- Run timing (warm-up offset, commit settle delay, drain timeout)
- Workload defaults (operations per transaction, payload size)
- Report parameters (bucket period, percentile rank)
- Simulated ledger defaults
"""

import os

# =============================================================================
# LOGGING
# =============================================================================

LOG_LEVEL: str = os.getenv("CCPERF_LOG_LEVEL", "INFO").upper()

# =============================================================================
# CONNECTION PROFILE AND LEDGER BACKEND
# =============================================================================

DEFAULT_PROFILE_PATH: str = os.getenv("CCPERF_PROFILE", "./connection-profile.yaml")
DEFAULT_LEDGER_TYPE: str = os.getenv("CCPERF_LEDGER", "simulated")

# Chaincode deployed on the channel under test
CHAINCODE_ID: str = "ccperf"
POPULATE_FUNCTION: str = "populate"

# Status code a proposal response must carry to count as endorsed
ENDORSEMENT_SUCCESS_STATUS: int = 200

# =============================================================================
# RUN TIMING
# =============================================================================

# Workers start pacing from now + WARM_UP_OFFSET_MS, whatever their spawn latency
WARM_UP_OFFSET_MS: float = 5000.0

# Commit notifications still in flight when the last worker exits
COMMIT_SETTLE_MS: float = 3000.0

# How long a worker waits for its in-flight requests after the pacing loop ends
DRAIN_TIMEOUT_SECONDS: float = 30.0

# One-shot commit subscription used by the population phase
POPULATION_TIMEOUT_SECONDS: float = 300.0

# Coordinator poll interval while waiting for worker processes
PROCESS_POLL_INTERVAL_SECONDS: float = 0.1

# Poll interval of the simulated ledger's cross-process order feed
SIM_ORDER_FEED_POLL_SECONDS: float = 0.01

# =============================================================================
# WORKLOAD DEFAULTS
# =============================================================================

DEFAULT_PROCESSES: int = 1
DEFAULT_TARGET_TPS: float = 1.0
DEFAULT_DURATION_SECONDS: float = 60.0
DEFAULT_WORKLOAD: str = "putstate"
DEFAULT_OPERATIONS_PER_TX: int = 1
DEFAULT_PAYLOAD_SIZE: int = 1

# =============================================================================
# REPORT PARAMETERS
# =============================================================================

REPORT_PERIOD_MS: float = 5000.0
LATENCY_PERCENTILE: float = 0.9
MS_PER_SECOND: float = 1000.0

# =============================================================================
# PERSISTED ARTIFACTS
# =============================================================================

BLOCKS_LOG_FILENAME: str = "blocks.json"
REQUESTS_LOG_TEMPLATE: str = "requests-{worker_id}.json"
TRANSACTIONS_PARQUET_PREFIX: str = "transactions"

# =============================================================================
# GRAFANA ANNOTATION
# =============================================================================

GRAFANA_DASHBOARD_ID: int = 2
GRAFANA_TIMEOUT_SECONDS: float = 10.0

# =============================================================================
# SIMULATED LEDGER DEFAULTS
# =============================================================================

SIM_ENDORSE_LATENCY_MS: float = 50.0
SIM_ORDER_LATENCY_MS: float = 100.0
SIM_COMMIT_LATENCY_MS: float = 200.0
SIM_BATCH_TIMEOUT_MS: float = 2000.0  # Fabric default BatchTimeout
SIM_MAX_MESSAGE_COUNT: int = 10  # Fabric default MaxMessageCount
