"""
Sampler loop: poll the station counters, score them, send one record per tick.
"""

from __future__ import annotations

import logging
import math
from typing import Callable, Optional, Protocol

from lq.analysis.config import EngineConfig
from lq.analysis.engine import MetricEngine
from lq.analysis.types import CounterSample, LinkScore, TickMetrics
from lq.errors import CounterSourceError, StationNotFound
from lq.transport.sender import WireSender
from lq.transport.wire import build_record
from lq.utils.log import get_logger
from lq.utils.signals import StopFlag
from lq.utils.validate import SenderConfig

logger = get_logger(__name__)


class CounterSource(Protocol):
    def fetch(self, mac: Optional[str]) -> tuple[CounterSample, str]: ...


def _fmt(value: float | None, spec: str) -> str:
    if value is None or math.isnan(value):
        return "nan"
    return format(value, spec)


def describe_tick(tick: TickMetrics, peer: str | None) -> str:
    """
    One human-readable line with the smoothed and raw values of a tick.
    """
    tx = tick.tx_score or LinkScore()
    rx = tick.rx_score or LinkScore()
    hz = 1.0 / tick.interval_s if tick.interval_s > 0 else 0.0
    return (
        f"mac={peer or '?'} Hz={hz:.2f} "
        f"rssi={_fmt(tick.sample.signal_dbm, '.1f')} dBm (norm {_fmt(tick.rssi, '.1f')}) "
        f"link={_fmt(tick.combined, '.1f')} "
        f"tx={_fmt(tick.tx, '.1f')} (ratio={_fmt(tx.ratio, '.4f')}, "
        f"retries/s={_fmt(tx.rate('tx_retries'), '.2f')}, "
        f"fail/s={_fmt(tx.rate('tx_failed'), '.2f')}, "
        f"beacon/s={_fmt(tx.rate('beacon_losses'), '.2f')}, "
        f"packets/s={_fmt(tx.packet_rate, '.2f')}) "
        f"rx={_fmt(tick.rx, '.1f')} (ratio={_fmt(rx.ratio, '.4f')}, "
        f"dup/s={_fmt(rx.rate('rx_duplicates'), '.2f')}, "
        f"drop/s={_fmt(rx.rate('rx_drops'), '.2f')}, "
        f"packets/s={_fmt(rx.packet_rate, '.2f')})"
    )


class Sampler:
    """
    One sampler tick = fetch counters -> derive metrics -> send record.
    """
    def __init__(
        self,
        source: CounterSource,
        engine: MetricEngine,
        sender: WireSender,
        mac: Optional[str],
    ) -> None:
        self.source = source
        self.engine = engine
        self.sender = sender
        self.mac = mac

    def tick(self) -> TickMetrics | None:
        """
        Run one tick. Returns None when the counters could not be fetched.
        """
        try:
            sample, matched = self.source.fetch(self.mac)
        except StationNotFound as e:
            logger.warning("Unable to fetch metrics: %s", e)
            self.engine.source_lost()
            return None
        except CounterSourceError as e:
            logger.warning("Unable to fetch metrics: %s", e)
            self.engine.query_failed()
            return None

        tick = self.engine.process(sample, matched)
        self.sender.send(build_record(tick))
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(describe_tick(tick, self.engine.peer))
        return tick


def run_sampler(
    cfg: SenderConfig,
    source: CounterSource,
    sender: WireSender,
    stop: StopFlag | None = None,
    sleep: Optional[Callable[[float], object]] = None,
) -> int:
    """
    Tick until *cfg.count* ticks ran (0 = forever) or a stop is requested.

    Between ticks the loop waits on *stop*, so a signal ends the wait at once.
    Returns the number of ticks run.
    """
    stop = stop or StopFlag()
    sleep = sleep or stop.wait
    sampler = Sampler(source, MetricEngine(EngineConfig.for_interval_ms(cfg.interval_ms)), sender, cfg.mac)
    ticks = 0
    try:
        while not stop:
            sampler.tick()
            ticks += 1
            if cfg.count > 0 and ticks >= cfg.count:
                break
            if cfg.interval_ms <= 0:
                break
            sleep(cfg.interval_ms / 1000.0)
    finally:
        sender.close()
    logger.info("Sampler stopped after %d ticks (%d sent, %d failed)", ticks, sender.sent, sender.failed)
    return ticks
