import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from web3 import AsyncWeb3

from core.utils import ChainIdentityMismatch, UnknownChain, fan_out
from data_models import ChainDescriptor


def default_connection_factory(descriptor: ChainDescriptor, timeout: float = 10.0) -> AsyncWeb3:
    return AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(
        descriptor.rpc_url,
        request_kwargs={'timeout': timeout},
    ))


class ChainRegistry:
    """
    Owns the supported chain descriptors and exactly one verified AsyncWeb3
    connection per chain. A chain appears in the registry only after its
    endpoint reported the configured chain id.

    Connections are created during registration and closed by `close()`.
    Other components only read through them.
    """

    def __init__(
        self,
        connection_factory: Optional[Callable[[ChainDescriptor], Any]] = None,
        register_timeout_s: float = 15.0,
    ):
        self.logger = logging.getLogger(__name__)
        self.connection_factory = connection_factory or default_connection_factory
        self.register_timeout_s = register_timeout_s
        self._chains: Dict[int, ChainDescriptor] = {}
        self._connections: Dict[int, Any] = {}
        self._pending: set = set()

    async def register(self, descriptor: ChainDescriptor) -> None:
        """
        Connects to the descriptor's endpoint and verifies its chain id.
        Raises ChainIdentityMismatch on disagreement; any other connection or
        query error is re-raised as is. The chain is only stored on success.
        """
        cid = descriptor.chain_id
        if cid in self._chains or cid in self._pending:
            raise ValueError(f"chain {cid} ({descriptor.name}) is already registered")

        self._pending.add(cid)
        connection = None
        try:
            connection = self.connection_factory(descriptor)
            reported = int(await connection.eth.chain_id)
            if reported != cid:
                raise ChainIdentityMismatch(descriptor.name, cid, reported)
        except BaseException:
            # covers timeouts and cancellation from register_all as well
            if connection is not None:
                await asyncio.shield(self._disconnect(cid, connection))
            raise
        finally:
            self._pending.discard(cid)

        self._chains[cid] = descriptor
        self._connections[cid] = connection

        self.logger.info(f"Added chain: {descriptor.name} (ID: {cid})")

    async def register_all(self, descriptors: Iterable[ChainDescriptor]) -> Dict[int, Optional[BaseException]]:
        """
        Registers every descriptor concurrently. Partial success is the normal
        case: returns {chain_id: None on success, else the error}.
        """
        descriptors = list(descriptors)
        results = await fan_out(
            {d.chain_id: (lambda d=d: self.register(d)) for d in descriptors},
            timeout=self.register_timeout_s,
            limit=len(descriptors) or 1,
        )
        outcome = {}
        for d in descriptors:
            result = results[d.chain_id]
            if isinstance(result, BaseException):
                self.logger.warning(
                    f"Failed to add chain {d.name} ({d.chain_id}): {result!r}", extra={'chain_id': d.chain_id}
                )
                outcome[d.chain_id] = result
            else:
                outcome[d.chain_id] = None

        self.logger.info(f"Connected to {len(self._chains)}/{len(descriptors)} chains")
        return outcome

    def lookup(self, chain_id: int) -> ChainDescriptor:
        try:
            return self._chains[chain_id]
        except KeyError:
            raise UnknownChain(chain_id) from None

    def connection(self, chain_id: int) -> Any:
        try:
            return self._connections[chain_id]
        except KeyError:
            raise UnknownChain(chain_id) from None

    def all(self) -> List[ChainDescriptor]:
        return list(self._chains.values())

    def chain_ids(self) -> List[int]:
        return list(self._chains.keys())

    def __contains__(self, chain_id: int) -> bool:
        return chain_id in self._chains

    def __len__(self) -> int:
        return len(self._chains)

    async def _disconnect(self, chain_id: int, connection: Any) -> None:
        provider = getattr(connection, 'provider', None)
        disconnect = getattr(provider, 'disconnect', None)
        if disconnect is None:
            return
        try:
            result = disconnect()
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            self.logger.warning(f"Failed to close connection for chain {chain_id}: {e}")

    async def close(self) -> None:
        """Gracefully closes all chain connections."""
        self.logger.info("Closing all chain connections...")
        await asyncio.gather(*(self._disconnect(cid, conn) for cid, conn in self._connections.items()))
        self._connections.clear()
        self._chains.clear()
        self.logger.info("All chain connections closed.")
