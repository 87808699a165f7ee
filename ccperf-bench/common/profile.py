"""
Connection profile loading and topology validation.

The profile is read once with PyYAML and resolved into frozen dataclasses:
certificate and key ``path`` entries are replaced by the PEM text they point
to (relative to the profile's directory), so the result can be pickled into
worker processes and is never mutated afterwards.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Sequence, Tuple

import yaml

from common.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PeerNode:
    name: str
    url: str = ""
    tls_ca_pem: Optional[str] = None


@dataclass(frozen=True)
class OrdererNode:
    name: str
    url: str = ""
    tls_ca_pem: Optional[str] = None


@dataclass(frozen=True)
class Organization:
    name: str
    mspid: str
    peers: Tuple[str, ...] = ()
    signed_cert_pem: Optional[str] = None
    admin_private_key_pem: Optional[str] = None


@dataclass(frozen=True)
class ChannelPeer:
    name: str
    endorsing_peer: bool = True
    ledger_query: bool = True
    event_source: bool = True


@dataclass(frozen=True)
class Channel:
    name: str
    orderers: Tuple[str, ...] = ()
    peers: Tuple[ChannelPeer, ...] = ()

    @property
    def peer_names(self) -> List[str]:
        return [peer.name for peer in self.peers]

    @property
    def endorsing_peers(self) -> List[str]:
        return [peer.name for peer in self.peers if peer.endorsing_peer]


@dataclass(frozen=True)
class ConnectionProfile:
    """Fully resolved network topology and admin credentials."""

    name: str
    organizations: Tuple[Organization, ...]
    peers: Tuple[PeerNode, ...]
    orderers: Tuple[OrdererNode, ...]
    channels: Tuple[Channel, ...]
    path: Optional[str] = None

    def organization(self, name: str) -> Organization:
        for org in self.organizations:
            if org.name == name:
                return org
        raise ConfigurationError(f"{name}: organization is not defined in connection profile")

    def channel(self, name: str) -> Channel:
        for channel in self.channels:
            if channel.name == name:
                return channel
        raise ConfigurationError(f"{name}: channel is not defined in connection profile")

    def peer(self, name: str) -> PeerNode:
        for peer in self.peers:
            if peer.name == name:
                return peer
        return PeerNode(name=name)

    def peers_for_org(self, org_name: str, channel_name: str) -> List[str]:
        """Peers owned by ``org_name`` that also serve ``channel_name``, in profile order."""
        channel_peers = set(self.channel(channel_name).peer_names)
        return [name for name in self.organization(org_name).peers if name in channel_peers]

    def endorsing_orgs(self, channel_name: str) -> List[str]:
        """Organizations owning at least one endorsing peer of the channel."""
        endorsing = set(self.channel(channel_name).endorsing_peers)
        return [org.name for org in self.organizations if endorsing.intersection(org.peers)]


@dataclass(frozen=True)
class Topology:
    """Validated selection of channel and organizations for one run."""

    channel_id: str
    org_name: str
    endorsing_orgs: Optional[Tuple[str, ...]]


def _load_pem(entry: Any, base_dir: str) -> Optional[str]:
    """Return the PEM text of a ``{pem: ...}`` or ``{path: ...}`` entry."""
    if not isinstance(entry, Mapping):
        return None
    if entry.get("pem") is not None:
        return entry["pem"]
    path = entry.get("path")
    if path is None:
        return None
    if not os.path.isabs(path):
        path = os.path.join(base_dir, path)
    try:
        with open(path, encoding="utf-8") as f:
            return f.read()
    except OSError as e:
        raise ConfigurationError(f"Cannot read {path}: {e}") from e


def _as_names(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, Mapping):
        return tuple(value.keys())
    return tuple(value)


def parse_connection_profile(data: Mapping, base_dir: str = ".", path: Optional[str] = None) -> ConnectionProfile:
    """Resolve an already-parsed profile document."""
    if not isinstance(data, Mapping):
        raise ConfigurationError("Connection profile must be a mapping")

    organizations = []
    for name, org in (data.get("organizations") or {}).items():
        org = org or {}
        organizations.append(Organization(
            name=name,
            mspid=org.get("mspid", name),
            peers=_as_names(org.get("peers")),
            signed_cert_pem=_load_pem(org.get("signedCert"), base_dir),
            admin_private_key_pem=_load_pem(org.get("adminPrivateKey"), base_dir),
        ))

    peers = []
    for name, peer in (data.get("peers") or {}).items():
        peer = peer or {}
        peers.append(PeerNode(
            name=name,
            url=peer.get("url", ""),
            tls_ca_pem=_load_pem(peer.get("tlsCACerts"), base_dir),
        ))

    orderers = []
    for name, orderer in (data.get("orderers") or {}).items():
        orderer = orderer or {}
        orderers.append(OrdererNode(
            name=name,
            url=orderer.get("url", ""),
            tls_ca_pem=_load_pem(orderer.get("tlsCACerts"), base_dir),
        ))

    channels = []
    for name, channel in (data.get("channels") or {}).items():
        channel = channel or {}
        channel_peers = []
        raw_peers = channel.get("peers") or {}
        if not isinstance(raw_peers, Mapping):
            raw_peers = {peer_name: {} for peer_name in raw_peers}
        for peer_name, options in raw_peers.items():
            options = options or {}
            channel_peers.append(ChannelPeer(
                name=peer_name,
                endorsing_peer=bool(options.get("endorsingPeer", True)),
                ledger_query=bool(options.get("ledgerQuery", True)),
                event_source=bool(options.get("eventSource", True)),
            ))
        channels.append(Channel(
            name=name,
            orderers=_as_names(channel.get("orderers")),
            peers=tuple(channel_peers),
        ))

    return ConnectionProfile(
        name=str(data.get("name", "")),
        organizations=tuple(organizations),
        peers=tuple(peers),
        orderers=tuple(orderers),
        channels=tuple(channels),
        path=path,
    )


def load_connection_profile(path: str) -> ConnectionProfile:
    """Load and resolve a YAML (or JSON) connection profile.

    Args:
        path: Profile file path

    Returns:
        Resolved, immutable connection profile

    Raises:
        ConfigurationError: If the file cannot be read or parsed
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read connection profile {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid connection profile {path}: {e}") from e

    profile = parse_connection_profile(data, os.path.dirname(os.path.abspath(path)), path)
    logger.info(
        f"Loaded connection profile {path}: {len(profile.organizations)} organizations, "
        f"{len(profile.peers)} peers, {len(profile.orderers)} orderers, {len(profile.channels)} channels"
    )
    return profile


def resolve_topology(
    profile: ConnectionProfile,
    channel_id: Optional[str] = None,
    org_name: Optional[str] = None,
    endorsing_orgs: Optional[Sequence[str]] = None,
) -> Topology:
    """Check that the profile can carry a run and pick the channel and organizations.

    Raises:
        ConfigurationError: On any missing or inconsistent topology element
    """
    if channel_id is None:
        if not profile.channels:
            raise ConfigurationError("No channel is defined in connection profile")
        channel_id = profile.channels[0].name
    channel = profile.channel(channel_id)

    if not profile.organizations:
        raise ConfigurationError("No valid organization is defined in connection profile")
    if not channel.peers:
        raise ConfigurationError(f"No valid peer is defined for {channel_id} in connection profile")
    if not channel.orderers:
        raise ConfigurationError(f"No valid orderer is defined for {channel_id} in connection profile")

    candidates = profile.endorsing_orgs(channel_id)
    if endorsing_orgs is not None:
        requested = [name for name in endorsing_orgs if name]
        if not requested or any(name not in candidates for name in requested):
            raise ConfigurationError("Invalid --endorsing-orgs option")
        selected = tuple(requested)
    else:
        selected = None

    allowed = list(selected) if selected else candidates
    if org_name is None:
        if not allowed:
            raise ConfigurationError(f"No endorsing organization is defined for {channel_id}")
        org_name = allowed[0]
    elif org_name not in allowed:
        raise ConfigurationError(f"{org_name}: not a valid organization for endorsing in {channel_id}")

    return Topology(channel_id=channel_id, org_name=org_name, endorsing_orgs=selected)
