"""Export pipeline: block window aggregation, the exporter and the publisher.

The publisher owns a single rendered snapshot. A background loop replaces it
once per refresh interval and HTTP handlers only ever read it, so a slow
daemon never blocks a scrape.
"""

import logging
import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from dataclasses import dataclass

from . import telemetry
from .client import BlockHeadersRangeRequest, ClientError
from .prometheus import Metric, RenderingError, render_metrics

logger = logging.getLogger(__name__)

BLOCK_COUNT_LABEL = "block_count"


class ExportError(Exception):
    reason = "unknown"


class ClientExportError(ExportError):
    reason = "client"

    def __str__(self):
        return f"monero RPC client error: {self.__cause__}"


class UntrustedError(ExportError):
    reason = "untrusted"

    def __str__(self):
        return "received an untrusted response from node"


class RenderError(ExportError):
    reason = "render"

    def __str__(self):
        return f"rendering error: {self.__cause__}"


@dataclass(frozen=True)
class BlocksMetrics:
    avg_txes: float = 0.0
    max_txes: float = 0.0
    avg_reward: float = 0.0
    max_reward: float = 0.0
    avg_size: float = 0.0
    max_size: float = 0.0


def _mean(values):
    if not values:
        return math.nan
    return sum(values) / len(values)


def window_stats(headers, count):
    """Aggregate the first ``count`` headers of the fetched window.

    Orphaned blocks are skipped. When nothing is left the averages are NaN
    and the maxima 0.
    """
    blocks = [h for h in headers[:count] if not h.orphan_status]

    txes = [float(h.num_txes) for h in blocks]
    rewards = [float(h.reward) for h in blocks]
    sizes = [float(h.block_size) for h in blocks]

    return BlocksMetrics(
        avg_txes=_mean(txes),
        max_txes=max(txes, default=0.0),
        avg_reward=_mean(rewards),
        max_reward=max(rewards, default=0.0),
        avg_size=_mean(sizes),
        max_size=max(sizes, default=0.0),
    )


# (metric name, BlocksMetrics attribute), in emission order
BLOCKS_METRICS = [
    ("monero_blocks_avg_txes", "avg_txes"),
    ("monero_blocks_max_txes", "max_txes"),
    ("monero_blocks_avg_reward", "avg_reward"),
    ("monero_blocks_max_reward", "max_reward"),
    ("monero_blocks_avg_size", "avg_size"),
    ("monero_blocks_max_size", "max_size"),
]


class Exporter:
    def __init__(self, client, block_spans):
        self.client = client
        self.block_spans = list(block_spans) or [1]
        self.max_block_span = max(self.block_spans)

    def _fetch_pool_and_headers(self, height):
        req = BlockHeadersRangeRequest(
            start_height=max(height - self.max_block_span, 0),
            end_height=max(height - 1, 0),
        )
        pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="monerod-rpc")
        try:
            pool_future = pool.submit(self.client.get_transaction_pool_stats)
            headers_future = pool.submit(self.client.get_block_headers_range, req)
            for future in as_completed([pool_future, headers_future]):
                future.result()
        except ClientError as e:
            raise ClientExportError() from e
        finally:
            # the first failure returns at once; a still-running sibling call is abandoned
            pool.shutdown(wait=False, cancel_futures=True)
        return pool_future.result().pool_stats, headers_future.result().headers

    def export(self):
        try:
            info = self.client.get_info()
        except ClientError as e:
            raise ClientExportError() from e

        # assumed uniform across every endpoint of the node
        if info.untrusted:
            raise UntrustedError()

        metrics = []

        def push(name, value):
            metrics.append(Metric.gauge(name, float(value)))

        # Node
        push("monero_node_database_size", info.database_size)
        push("monero_node_free_space", info.free_space)
        push("monero_node_grey_peerlist_size", info.grey_peerlist_size)
        push("monero_node_incoming_connections_count", info.incoming_connections_count)
        push("monero_node_offline", int(info.offline))
        push("monero_node_outgoing_connections_count", info.outgoing_connections_count)
        push("monero_node_rpc_connections_count", info.rpc_connections_count)
        push("monero_node_synchronized", int(info.synchronized))
        push("monero_node_white_peerlist_size", info.white_peerlist_size)

        if not info.synchronized:
            logger.info("node is not synchronized yet - skipped exporting tx pool and network metrics")
            return self._render(metrics)

        pool_stats, headers = self._fetch_pool_and_headers(info.height)

        # Node - transaction pool
        push("monero_txpool_bytes_max", pool_stats.bytes_max)
        push("monero_txpool_bytes_med", pool_stats.bytes_med)
        push("monero_txpool_bytes_min", pool_stats.bytes_min)
        push("monero_txpool_bytes_total", pool_stats.bytes_total)
        push("monero_txpool_double_spends", pool_stats.num_double_spends)
        push("monero_txpool_txs_failing", pool_stats.num_failing)
        push("monero_txpool_txs_not_relayed", pool_stats.num_not_relayed)
        push("monero_txpool_oldest_tx", pool_stats.oldest)
        push("monero_txpool_txs_above_10min", pool_stats.num_10m)
        push("monero_txpool_txs_total", pool_stats.txs_total)

        # Network
        push("monero_network_block_size_limit", info.block_size_limit)
        push("monero_network_block_size_median", info.block_size_median)
        push("monero_network_block_weight_limit", info.block_weight_limit)
        push("monero_network_block_weight_median", info.block_weight_median)
        push("monero_network_cumulative_difficulty", info.cumulative_difficulty)
        push("monero_network_difficulty", info.difficulty)
        push("monero_network_height", info.height)
        push("monero_network_target", info.target)
        push("monero_network_target_height", info.target_height)
        push("monero_network_tx_count", info.tx_count)

        # Network - blocks
        per_span = [(str(span), window_stats(headers, span)) for span in self.block_spans]
        for name, attr in BLOCKS_METRICS:
            values = [(span, getattr(stats, attr)) for span, stats in per_span]
            metrics.append(Metric.gauge_with_label_values(name, BLOCK_COUNT_LABEL, values))

        return self._render(metrics)

    def _render(self, metrics):
        try:
            return render_metrics(metrics)
        except RenderingError as e:
            raise RenderError() from e


class ReadWriteLock:
    """Many concurrent readers or one writer; a waiting writer holds off new readers."""

    def __init__(self):
        self._cond = threading.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self):
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class Publisher:
    def __init__(self, exporter, refresh_interval):
        self.exporter = exporter
        self.refresh_interval = refresh_interval
        self._lock = ReadWriteLock()
        self._rendered_metrics = None

    def get_metrics(self):
        with self._lock.read():
            return self._rendered_metrics

    def refresh(self):
        with telemetry.EXPORT_DURATION.time():
            try:
                rendered = self.exporter.export()
            except ExportError as e:
                logger.error("%s", e)
                telemetry.record_failure(e.reason)
                rendered = None
            else:
                telemetry.record_success()

        with self._lock.write():
            self._rendered_metrics = rendered

    def run(self, stop_event):
        """Refresh every ``refresh_interval`` seconds until ``stop_event`` is set.

        The first refresh happens immediately. A cycle that overruns the
        interval pushes the next one back instead of queueing extra cycles.
        """
        next_tick = time.monotonic()
        while not stop_event.is_set():
            delay = next_tick - time.monotonic()
            if delay > 0 and stop_event.wait(delay):
                break
            self.refresh()
            next_tick = max(next_tick + self.refresh_interval, time.monotonic())
