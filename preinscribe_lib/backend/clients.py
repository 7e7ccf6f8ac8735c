"""
Async JSON-RPC client for an ordinals indexer.

This module provides:
- JsonRpcDatasource: BaseDatasource implementation speaking newline-delimited
  JSON-RPC 2.0 over TCP or SSL (Address.GetUnspents, Ordinals.GetInscriptions,
  Ordinals.GetInscriptionUtxo)

Uses asyncio streams for non-blocking I/O. Requests made outside of an
open connect() block use a short-lived connection of their own.
"""

import asyncio
import json
import ssl
import logging
from typing import Any, Dict, List, Optional, Union
from contextlib import asynccontextmanager

from ..core.constants import DEFAULT_HOST, DEFAULT_RPC_PORT, SOCKET_TIMEOUT, SHUTDOWN_TIMEOUT
from ..core.errors import DatasourceError
from ..core.models import UTXO, Inscription, UnspentsResponse
from .datasource import BaseDatasource

logger = logging.getLogger('preinscribe.clients')


class JsonRpcDatasource(BaseDatasource):
    """
    Datasource backed by an ordinals indexer JSON-RPC server.

    Responses on one connection are read in request order, so requests are
    serialized with a lock; concurrent callers can share one connection.
    """

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_RPC_PORT,
        use_ssl: bool = False,
        verify_cert: bool = True,
        timeout: float = SOCKET_TIMEOUT
    ):
        """
        Initialize the datasource.

        Args:
            host: Server hostname or IP address
            port: Server port number
            use_ssl: Whether to use SSL/TLS encryption
            verify_cert: Whether to verify SSL certificate
            timeout: Socket timeout in seconds
        """
        self.host = host
        self.port = port
        self.use_ssl = use_ssl
        self.verify_cert = verify_cert
        self.timeout = timeout
        self.reader: Optional[asyncio.StreamReader] = None
        self.writer: Optional[asyncio.StreamWriter] = None
        self.request_id = 0
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def connect(self):
        """
        Async context manager holding a connection to the indexer.

        Example:
            >>> datasource = JsonRpcDatasource('localhost', 3000)
            >>> async with datasource.connect():
            ...     unspents = await datasource.get_unspents(address)
        """
        try:
            ssl_context = None
            if self.use_ssl:
                ssl_context = ssl.create_default_context()
                if not self.verify_cert:
                    ssl_context.check_hostname = False
                    ssl_context.verify_mode = ssl.CERT_NONE

            self.reader, self.writer = await asyncio.wait_for(
                asyncio.open_connection(
                    self.host,
                    self.port,
                    ssl=ssl_context,
                    server_hostname=self.host if self.use_ssl else None
                ),
                timeout=self.timeout
            )

            yield self

        except asyncio.TimeoutError as e:
            raise DatasourceError(f"Connection to indexer {self.host}:{self.port} timed out") from e
        except (OSError, ssl.SSLError) as e:
            raise DatasourceError(f"Indexer connection error: {e}") from e
        finally:
            if self.writer:
                try:
                    self.writer.close()
                    # SSL terminating proxies may never acknowledge the close
                    await asyncio.wait_for(self.writer.wait_closed(), timeout=SHUTDOWN_TIMEOUT)
                except (ssl.SSLError, OSError, asyncio.TimeoutError):
                    pass
                finally:
                    self.writer = None
                    self.reader = None

    async def _send_request(self, method: str, params: Union[List[Any], Dict[str, Any]]) -> Any:
        """
        Send JSON-RPC request and get response.

        Args:
            method: RPC method name
            params: RPC method parameters (positional or named)

        Returns:
            Result from server response

        Raises:
            DatasourceError: If not connected, the connection failed or the
                server returned an error
        """
        if not self.writer or not self.reader:
            raise DatasourceError("Not connected to indexer")

        async with self._lock:
            self.request_id += 1
            request = {
                "jsonrpc": "2.0",
                "id": self.request_id,
                "method": method,
                "params": params
            }

            logger.debug(f"Sending request to indexer: {request}")

            self.writer.write((json.dumps(request) + "\n").encode())
            await self.writer.drain()

            try:
                response_data = await asyncio.wait_for(self.reader.readline(), timeout=self.timeout)
            except asyncio.TimeoutError as e:
                raise DatasourceError(f"{method} timed out after {self.timeout}s") from e

        if not response_data:
            raise DatasourceError("Connection closed by indexer")

        try:
            response = json.loads(response_data.decode().strip())
        except json.JSONDecodeError as e:
            raise DatasourceError(f"Failed to parse indexer JSON response: {e}") from e

        if response.get("error"):
            error = response["error"]
            message = error.get('message', error) if isinstance(error, dict) else error
            raise DatasourceError(f"Indexer RPC Error ({method}): {message}")

        return response.get("result")

    async def call(self, method: str, params: Union[List[Any], Dict[str, Any]]) -> Any:
        """Send a request, opening a one-off connection when none is open."""
        if self.writer:
            return await self._send_request(method, params)
        async with self.connect():
            return await self._send_request(method, params)

    async def get_unspents(
        self,
        address: str,
        rarity: Optional[List[str]] = None,
        type: str = 'spendable',
        sort: str = 'desc'
    ) -> UnspentsResponse:
        """
        Get the UTXOs of an address.

        Args:
            address: Address to query
            rarity: Sat rarities allowed in spendable UTXOs
            type: 'spendable' or 'all'
            sort: Value ordering, 'asc' or 'desc'

        Returns:
            UnspentsResponse split by spendability
        """
        result = await self.call("Address.GetUnspents", {
            "address": address,
            "format": "next",
            "type": type,
            "options": {
                "allowedrarity": rarity if rarity is not None else self.default_rarity(),
                "safetospend": type == 'spendable',
            },
            "sort": {"value": sort},
        })

        utxos = [UTXO.from_dict(u) for u in (result or [])]
        spendable = [u for u in utxos if u.safe_to_spend is not False]
        unspendable = [u for u in utxos if u.safe_to_spend is False]
        logger.debug(f"{address}: {len(spendable)} spendable, {len(unspendable)} unspendable UTXOs")

        return UnspentsResponse(
            spendable_utxos=spendable,
            unspendable_utxos=unspendable,
            total_count=len(utxos)
        )

    async def get_inscriptions(self, outpoint: str) -> List[Inscription]:
        """
        Get the inscriptions located at an outpoint.

        Args:
            outpoint: "txid:vout"

        Returns:
            List of inscriptions (empty if none)
        """
        result = await self.call("Ordinals.GetInscriptions", {
            "filter": {"outpoint": outpoint},
            "sort": {"number": "asc"},
        })
        return [Inscription.from_dict(i) for i in (result or [])]

    async def get_inscription_utxo(self, inscription_id: str) -> Optional[UTXO]:
        """
        Get the UTXO currently holding an inscription.

        Args:
            inscription_id: Inscription id ("<txid>i<index>")

        Returns:
            UTXO, or None if the indexer does not know the inscription
        """
        result = await self.call("Ordinals.GetInscriptionUtxo", {"id": inscription_id})
        if not result:
            return None
        return UTXO.from_dict(result)
