"""
Shared test fixtures: a small two-organization profile and fakes.
"""

import asyncio
import copy
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from common.errors import OrderingError
from common.profile import parse_connection_profile
from common.run_config import build_run_config
from ledger.base import CommitMonitor, LedgerClient, OrderAck, Proposal, ProposalResponse

PROFILE_DATA = {
    "name": "test-network",
    "organizations": {
        "Org1": {"mspid": "Org1MSP", "peers": ["peer0.org1", "peer1.org1", "peer2.org1"]},
        "Org2": {"mspid": "Org2MSP", "peers": ["peer0.org2"]},
    },
    "peers": {
        "peer0.org1": {"url": "grpcs://localhost:7051"},
        "peer1.org1": {"url": "grpcs://localhost:8051"},
        "peer2.org1": {"url": "grpcs://localhost:9051"},
        "peer0.org2": {"url": "grpcs://localhost:10051"},
    },
    "orderers": {
        "orderer0": {"url": "grpcs://localhost:7050"},
        "orderer1": {"url": "grpcs://localhost:8050"},
    },
    "channels": {
        "mychannel": {
            "orderers": ["orderer0", "orderer1"],
            "peers": {
                "peer0.org1": {"endorsingPeer": True},
                "peer1.org1": {"endorsingPeer": True},
                "peer2.org1": {"endorsingPeer": False},
                "peer0.org2": {},
            },
        },
    },
}

# Zero-latency simulator for fast in-process tests
FAST_LEDGER = {
    "endorse_latency_ms": "0",
    "order_latency_ms": "0",
    "commit_latency_ms": "0",
    "batch_timeout_ms": "10",
}


def profile_data():
    return copy.deepcopy(PROFILE_DATA)


def make_profile(data=None):
    return parse_connection_profile(data if data is not None else profile_data())


def make_config(**overrides):
    return build_run_config(make_profile(), **overrides)


class FakeLedgerClient(LedgerClient):
    """Ledger client answering immediately with a fixed endorsement status."""

    def __init__(self, profile, channel_id, org_name, options=None,
                 status=200, responses=None, fail_order=False):
        super().__init__(profile, channel_id, org_name, options)
        self.status = status
        self.responses = responses
        self.fail_order = fail_order
        self.proposals = []
        self.orders = []

    async def submit_proposal(self, request):
        self.proposals.append(request)
        await asyncio.sleep(0)
        if self.responses is not None:
            responses = list(self.responses)
        else:
            targets = request.targets or tuple(self.default_peers)
            responses = [ProposalResponse(peer, self.status) for peer in targets]
        return responses, Proposal(request.tx_id, request)

    async def submit_order(self, proposal, responses, orderer=None):
        self.orders.append((proposal.tx_id, orderer))
        await asyncio.sleep(0)
        if self.fail_order:
            raise OrderingError("orderer unavailable")
        return OrderAck(proposal.tx_id, orderer or self.default_orderer)

    def commit_monitor(self, peer_name):
        return CommitMonitor(peer_name)


class ProposalOnlyClient(LedgerClient):
    """Backend missing its ordering and commit surfaces."""

    async def submit_proposal(self, request):
        return [ProposalResponse(peer, 200) for peer in self.default_peers], Proposal(request.tx_id, request)


def make_fake_client(config, **kwargs):
    return FakeLedgerClient(config.profile, config.channel_id, config.org_name, **kwargs)
