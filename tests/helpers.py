"""Fake monerod responses shared by the test modules."""

from monerod_exporter.client import (
    BlockHeader,
    BlockHeadersRangeResponse,
    TransactionPoolStats,
    TransactionPoolStatsResponse,
)

INFO_FIELDS = {
    "block_size_limit": 600000,
    "block_size_median": 300000,
    "block_weight_limit": 600000,
    "block_weight_median": 300000,
    "cumulative_difficulty": 123456789,
    "database_size": 1000,
    "difficulty": 250000,
    "free_space": 2000,
    "grey_peerlist_size": 3,
    "height": 1000,
    "incoming_connections_count": 4,
    "offline": False,
    "outgoing_connections_count": 5,
    "rpc_connections_count": 6,
    "synchronized": True,
    "target": 120,
    "target_height": 0,
    "tx_count": 7,
    "tx_pool_size": 8,
    "untrusted": False,
    "white_peerlist_size": 9,
}

POOL_STATS_FIELDS = {
    "bytes_max": 10,
    "bytes_med": 11,
    "bytes_min": 12,
    "bytes_total": 13,
    "num_10m": 14,
    "num_double_spends": 15,
    "num_failing": 16,
    "num_not_relayed": 17,
    "oldest": 18,
    "txs_total": 19,
}


def header(num_txes=1, reward=100, block_size=1000, orphan=False):
    return BlockHeader(block_size=block_size, num_txes=num_txes, orphan_status=orphan, reward=reward)


class FakeClient:
    """Stands in for monerod; ``errors`` maps a method name to the exception it raises."""

    def __init__(self, info, headers=(), errors=None):
        self.info = info
        self.headers = tuple(headers)
        self.errors = errors or {}
        self.calls = []
        self.range_requests = []

    def _record(self, name):
        self.calls.append(name)
        if name in self.errors:
            raise self.errors[name]

    def get_info(self):
        self._record("get_info")
        return self.info

    def get_block_headers_range(self, req):
        self.range_requests.append(req)
        self._record("get_block_headers_range")
        return BlockHeadersRangeResponse(headers=self.headers, untrusted=False)

    def get_transaction_pool_stats(self):
        self._record("get_transaction_pool_stats")
        return TransactionPoolStatsResponse(
            pool_stats=TransactionPoolStats(**POOL_STATS_FIELDS), untrusted=False
        )


