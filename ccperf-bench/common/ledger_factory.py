"""
Factory module for creating ledger client instances.
"""

import importlib
import inspect
import logging

from common.errors import ConfigurationError
from common.run_config import RunConfig
from ledger.base import LedgerClient
from ledger.simulated import SimulatedLedgerClient

logger = logging.getLogger(__name__)

LEDGER_TYPES = {
    "simulated": SimulatedLedgerClient,
}


def resolve_ledger_class(ledger_type: str):
    """Map a ledger type to its client class.

    Args:
        ledger_type: A registered name (``simulated``) or a ``package.module:ClassName`` path

    Returns:
        LedgerClient subclass

    Raises:
        ConfigurationError: If the type is unknown or cannot be imported
    """
    cls = LEDGER_TYPES.get(ledger_type.lower())
    if cls is not None:
        return cls

    module_name, sep, class_name = ledger_type.partition(":")
    if not sep or not module_name or not class_name:
        choices = ", ".join(sorted(LEDGER_TYPES))
        raise ConfigurationError(
            f"Unsupported ledger type: {ledger_type}. Must be one of {choices} or package.module:ClassName."
        )
    try:
        cls = getattr(importlib.import_module(module_name), class_name)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Cannot load ledger client {ledger_type}: {e}") from e
    if not (isinstance(cls, type) and issubclass(cls, LedgerClient)):
        raise ConfigurationError(f"{ledger_type} is not a LedgerClient subclass")
    if inspect.isabstract(cls):
        missing = ", ".join(sorted(cls.__abstractmethods__))
        raise ConfigurationError(f"{ledger_type} does not implement {missing}")
    return cls


def create_ledger_client(config: RunConfig, order_feed=None) -> LedgerClient:
    """Create the ledger client described by the run configuration.

    Worker processes pass the coordinator client's ``order_feed``, if any.
    """
    cls = resolve_ledger_class(config.ledger)
    logger.debug(f"Creating {cls.__name__} for {config.channel_id}/{config.org_name}")
    if order_feed is not None:
        return cls(config.profile, config.channel_id, config.org_name, config.ledger_options, order_feed=order_feed)
    return cls(config.profile, config.channel_id, config.org_name, config.ledger_options)
