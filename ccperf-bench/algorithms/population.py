"""
One-shot population of the key range read by the getstate, mix and json workloads.
"""

import asyncio
import logging

from common.errors import LedgerError, PopulationError
from configuration import CHAINCODE_ID, POPULATE_FUNCTION, POPULATION_TIMEOUT_SECONDS
from ledger.base import LedgerClient, ProposalRequest, check_endorsement

logger = logging.getLogger(__name__)


class Populator:
    """Submits the ``populate`` transaction and blocks until its commit is observed."""

    def __init__(self, client: LedgerClient, population: int, size: int,
                 timeout_seconds: float = POPULATION_TIMEOUT_SECONDS):
        self.client = client
        self.population = population
        self.size = size
        self.timeout_seconds = timeout_seconds

    def build_request(self) -> ProposalRequest:
        return ProposalRequest(
            tx_id=self.client.new_transaction_id(),
            chaincode_id=CHAINCODE_ID,
            fcn=POPULATE_FUNCTION,
            args=("0", str(self.population), str(self.size)),
        )

    async def populate(self) -> str:
        """Run the population transaction.

        The commit subscription is registered before the proposal is sent so the
        block carrying the transaction cannot be missed.

        Returns:
            The transaction id

        Raises:
            PopulationError: If submission fails, the commit is not observed in time,
                or the transaction is committed as invalid
        """
        peer_name = self.client.channel.peer_names[0]
        request = self.build_request()
        logger.info(f"Populating {self.population} keys of size {self.size} (tx {request.tx_id[:12]})")

        async with self.client.commit_monitor(peer_name) as monitor:
            committed = monitor.wait_for_transaction(request.tx_id)
            try:
                responses, proposal = await self.client.submit_proposal(request)
                check_endorsement(responses)
                await self.client.submit_order(proposal, responses)
                code = await asyncio.wait_for(committed, timeout=self.timeout_seconds)
            except asyncio.TimeoutError:
                raise PopulationError(
                    f"Commit of population transaction {request.tx_id} not observed on {peer_name} "
                    f"within {self.timeout_seconds:.0f}s"
                ) from None
            except LedgerError as e:
                raise PopulationError(f"Population transaction failed: {e}") from e
            finally:
                if not committed.done():
                    committed.cancel()

        if code != "VALID":
            raise PopulationError(f"Population transaction {request.tx_id} committed as {code}")
        logger.info(f"Population committed on {peer_name}")
        return request.tx_id
