"""
Parquet snapshot of the merged transaction table.
"""

import os
import logging
from datetime import datetime
from typing import Mapping, Optional

from configuration import TRANSACTIONS_PARQUET_PREFIX
from persistence.metrics_aggregator import records_to_dataframe
from persistence.record import TransactionRecord

logger = logging.getLogger(__name__)


class ParquetPersistence:
    """Writes merged transaction records to Parquet files for later analysis.

    Attributes:
        output_dir: Directory where Parquet files will be saved
    """

    def __init__(self, output_dir: str):
        """Initialize Parquet persistence.

        Args:
            output_dir: Directory for saving Parquet files, created if missing
        """
        self.output_dir: str = output_dir
        os.makedirs(output_dir, exist_ok=True)

    def save_records(
        self,
        records: Mapping[str, TransactionRecord],
        filename_prefix: str = TRANSACTIONS_PARQUET_PREFIX,
    ) -> Optional[str]:
        """Save records with columns txid, t1, t2, t3, t4.

        Args:
            records: Merged records keyed by transaction id
            filename_prefix: Prefix for the generated filename

        Returns:
            Path to the saved file, or None if no records to save
        """
        if not records:
            return None

        logger.info(f"Saving {len(records)} transaction records to Parquet")
        df = records_to_dataframe(records)

        # Generate filename
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filepath = os.path.join(self.output_dir, f"{filename_prefix}_{timestamp}.parquet")

        df.to_parquet(filepath, index=False)
        return filepath
