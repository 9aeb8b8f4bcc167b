"""Built-in indexer definitions: which decoder feeds which owner, and from where."""

from collections.abc import Callable
from dataclasses import dataclass

from chainsync.services.decoding import CJewelStakingDecoder, EventDecoder, SynapseBridgeDecoder
from chainsync.services.errors import UnknownOwnerError
from config import get_settings


@dataclass(frozen=True)
class IndexerDefinition:
    name: str
    decoder_factory: Callable[[], EventDecoder]
    genesis_block: int = 0
    target_block: int | None = None
    description: str = ""

    def build_decoder(self) -> EventDecoder:
        return self.decoder_factory()


def _bridge_decoder() -> EventDecoder:
    return SynapseBridgeDecoder(chain_id=get_settings().chain.chain_id)


BUILTIN_INDEXERS: dict[str, IndexerDefinition] = {
    "bridge": IndexerDefinition(
        name="bridge",
        decoder_factory=_bridge_decoder,
        description="Synapse bridge deposits, redeems, mints and withdrawals",
    ),
    "jeweler": IndexerDefinition(
        name="jeweler",
        decoder_factory=CJewelStakingDecoder,
        description="cJEWEL staking deposits and withdrawals",
    ),
}


def get_definition(owner: str, definitions: dict[str, IndexerDefinition] | None = None) -> IndexerDefinition:
    found = (definitions if definitions is not None else BUILTIN_INDEXERS).get(owner)
    if found is None:
        raise UnknownOwnerError(f"Unknown indexer '{owner}'")
    return found
