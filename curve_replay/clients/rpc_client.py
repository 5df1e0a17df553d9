"""
HTTP JSON-RPC client for the chain data source
Plain request/response calls with ordered endpoint failover
"""

import asyncio
import itertools
from typing import Any, Dict, List, Optional

import aiohttp

from curve_replay.core.config import RPCConfig
from curve_replay.core.logger import get_logger
from curve_replay.core.metrics import LatencyTimer, get_metrics


logger = get_logger(__name__)


class RPCError(Exception):
    """Every endpoint failed or returned a JSON-RPC error"""


class RPCClient:
    """
    Sends JSON-RPC requests to the first healthy endpoint by priority

    Usage:
        client = RPCClient(rpc_config)
        await client.start()
        response = await client.call_http_rpc("getSlot", [])
        await client.stop()
    """

    def __init__(self, config: RPCConfig):
        """
        Args:
            config: RPC configuration with endpoints sorted by priority
        """
        self.config = config
        self._http_session: Optional[aiohttp.ClientSession] = None
        self._request_ids = itertools.count(1)
        self.consecutive_failures: Dict[str, int] = {
            ep.label: 0 for ep in config.endpoints
        }

        logger.info(
            "rpc_client_initialized",
            endpoint_count=len(config.endpoints),
            endpoints=[ep.label for ep in config.endpoints]
        )

    async def start(self) -> None:
        """Open the HTTP session"""
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
            logger.info("rpc_client_started")

    async def stop(self) -> None:
        """Close the HTTP session"""
        if self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
            logger.info("rpc_client_stopped")

    async def __aenter__(self) -> "RPCClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    async def call_http_rpc(self, method: str, params: List[Any]) -> Dict[str, Any]:
        """
        Make an HTTP RPC call with failover

        Args:
            method: JSON-RPC method name
            params: Method parameters

        Returns:
            Full JSON-RPC response dict (with "result")

        Raises:
            RuntimeError: If start() was not called
            RPCError: If all endpoints fail
        """
        if self._http_session is None:
            raise RuntimeError("HTTP session not initialized. Call start() first.")

        metrics = get_metrics()
        last_error: Optional[Exception] = None

        for endpoint in sorted(self.config.endpoints, key=lambda ep: ep.priority):
            payload = {
                "jsonrpc": "2.0",
                "id": next(self._request_ids),
                "method": method,
                "params": params
            }
            try:
                with LatencyTimer(metrics, "http_rpc_call"):
                    result = await asyncio.wait_for(
                        self._post(endpoint.url, payload),
                        timeout=endpoint.timeout_s
                    )

                if "error" in result:
                    error = result["error"]
                    message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
                    raise RPCError(f"RPC error: {message}")

                self.consecutive_failures[endpoint.label] = 0
                metrics.increment_counter("http_rpc_success", labels={"endpoint": endpoint.label})
                return result

            except (aiohttp.ClientError, asyncio.TimeoutError, RPCError, ValueError) as e:
                self.consecutive_failures[endpoint.label] += 1
                metrics.increment_counter("http_rpc_errors", labels={"endpoint": endpoint.label})
                logger.warning(
                    "http_rpc_call_failed",
                    endpoint=endpoint.label,
                    method=method,
                    failures=self.consecutive_failures[endpoint.label],
                    error=str(e)
                )
                last_error = e

        raise RPCError(f"All HTTP RPC endpoints failed. Last error: {last_error}")

    async def _post(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        async with self._http_session.post(url, json=payload) as response:
            response.raise_for_status()
            return await response.json()
