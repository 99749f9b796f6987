"""Monero daemon RPC client.

Typed wrappers around the three monerod calls the exporter needs. JSON-RPC
methods are posted to /json_rpc and their payload lives under "result";
the transaction pool stats endpoint is a plain JSON POST whose whole body is
the payload. Either way the payload must carry status "OK" before it is
decoded.
"""

import http.client
import json
import logging
from dataclasses import dataclass, fields
from urllib.request import Request, urlopen

logger = logging.getLogger(__name__)

STATUS_OK = "OK"


class ClientError(Exception):
    """Base class for every failure talking to monerod."""


class TransportError(ClientError):
    def __str__(self):
        return f"HTTP client error: {self.args[0]}"


class DeserializationError(ClientError):
    def __str__(self):
        return f"response deserialization error: {self.args[0]}"


class ProtocolError(ClientError):
    """The response was well-formed JSON but broke the envelope contract."""


class MissingResultError(ProtocolError):
    def __str__(self):
        return "result not found in the response"


class UnexpectedStatusError(ProtocolError):
    def __init__(self, status=None):
        super().__init__(status)
        self.status = status

    def __str__(self):
        return f"unexpected or missing status: {self.status!r}"


def _decode(cls, payload):
    """Build the frozen dataclass ``cls`` from a JSON object.

    Integer fields accept non-negative JSON integers only and boolean fields
    accept JSON booleans only. Extra keys are ignored.
    """
    if not isinstance(payload, dict):
        raise DeserializationError(f"expected object for {cls.__name__}")
    values = {}
    for f in fields(cls):
        if f.name not in payload:
            raise DeserializationError(f"missing field {f.name!r} in {cls.__name__}")
        raw = payload[f.name]
        decoder = _FIELD_DECODERS.get((cls, f.name))
        if decoder is not None:
            values[f.name] = decoder(raw)
        elif f.type in (bool, "bool"):
            if not isinstance(raw, bool):
                raise DeserializationError(f"field {f.name!r} is not a boolean")
            values[f.name] = raw
        else:
            if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
                raise DeserializationError(f"field {f.name!r} is not an unsigned integer")
            values[f.name] = raw
    return cls(**values)


@dataclass(frozen=True)
class InfoResponse:
    block_size_limit: int
    block_size_median: int
    block_weight_limit: int
    block_weight_median: int
    cumulative_difficulty: int
    database_size: int
    difficulty: int
    free_space: int
    grey_peerlist_size: int
    height: int
    incoming_connections_count: int
    offline: bool
    outgoing_connections_count: int
    rpc_connections_count: int
    synchronized: bool
    target: int
    target_height: int
    tx_count: int
    tx_pool_size: int
    untrusted: bool
    white_peerlist_size: int


@dataclass(frozen=True)
class BlockHeadersRangeRequest:
    start_height: int
    end_height: int

    def to_params(self):
        return {"start_height": self.start_height, "end_height": self.end_height}


@dataclass(frozen=True)
class BlockHeader:
    block_size: int
    num_txes: int
    orphan_status: bool
    reward: int


@dataclass(frozen=True)
class BlockHeadersRangeResponse:
    headers: tuple
    untrusted: bool


@dataclass(frozen=True)
class TransactionPoolStats:
    bytes_max: int
    bytes_med: int
    bytes_min: int
    bytes_total: int
    num_10m: int
    num_double_spends: int
    num_failing: int
    num_not_relayed: int
    oldest: int
    txs_total: int


@dataclass(frozen=True)
class TransactionPoolStatsResponse:
    pool_stats: TransactionPoolStats
    untrusted: bool


def _decode_headers(raw):
    if not isinstance(raw, list):
        raise DeserializationError("field 'headers' is not a list")
    return tuple(_decode(BlockHeader, h) for h in raw)


_FIELD_DECODERS = {
    (BlockHeadersRangeResponse, "headers"): _decode_headers,
    (TransactionPoolStatsResponse, "pool_stats"): lambda raw: _decode(TransactionPoolStats, raw),
}


class JsonRpcEnvelope:
    """Request wrapped as a JSON-RPC call; payload sits under "result"."""

    path = "/json_rpc"

    def __init__(self, method, params=None):
        self.method = method
        self.params = params or {}

    def body(self):
        return {"jsonrpc": "2.0", "id": "0", "method": self.method, "params": self.params}

    def select_result(self, response):
        if not isinstance(response, dict):
            return None
        return response.get("result")


class PlainEnvelope:
    """Flat REST-style request; the whole response is the payload."""

    def __init__(self, path, params=None):
        self.path = path
        self.params = params or {}

    def body(self):
        return self.params

    def select_result(self, response):
        return response


class Client:
    def __init__(self, base_url, timeout=1.0, ssl_context=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.ssl_context = ssl_context

    def _post(self, path, body):
        try:
            # a malformed base URL fails here with ValueError
            req = Request(
                f"{self.base_url}{path}",
                data=json.dumps(body).encode(),
                headers={"Content-Type": "application/json"},
            )
            with urlopen(req, timeout=self.timeout, context=self.ssl_context) as resp:
                raw = resp.read()
        except (OSError, ValueError, http.client.HTTPException) as e:
            raise TransportError(e) from e
        try:
            return json.loads(raw)
        except ValueError as e:
            raise DeserializationError(e) from e

    def call(self, envelope, response_type):
        logger.debug("calling monerod %s", getattr(envelope, "method", envelope.path))
        response = self._post(envelope.path, envelope.body())

        result = envelope.select_result(response)
        if not isinstance(result, dict):
            raise MissingResultError()

        status = result.get("status")
        if status != STATUS_OK:
            raise UnexpectedStatusError(status)

        return _decode(response_type, result)

    def get_info(self):
        return self.call(JsonRpcEnvelope("get_info"), InfoResponse)

    def get_block_headers_range(self, req):
        envelope = JsonRpcEnvelope("get_block_headers_range", req.to_params())
        return self.call(envelope, BlockHeadersRangeResponse)

    def get_transaction_pool_stats(self):
        return self.call(PlainEnvelope("/get_transaction_pool_stats"), TransactionPoolStatsResponse)
