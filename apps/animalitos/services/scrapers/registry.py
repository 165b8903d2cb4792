from __future__ import annotations

import time
from typing import Callable, List, Optional, Tuple

from ..cache import TimedCache
from ..lottery_config import LotteryConfig
from .base import BaseScraper, Deadline, ExtractionResult, FetchConfig, ScrapeError, logger
from .loteriadehoy import LoteriaDeHoyScraper
from .lotoven import LotoVenScraper

SCRAPERS = {
    'lotoven': LotoVenScraper,
    'loteriadehoy': LoteriaDeHoyScraper,
}


def build_scraper(
    name: str,
    info: dict,
    lottery: LotteryConfig,
    fetch_config: FetchConfig | None = None,
    session=None,
    sleep: Callable[[float], None] = time.sleep,
) -> Optional[BaseScraper]:
    scraper_cls = SCRAPERS.get(name)
    if not scraper_cls:
        logger.warning('No page parser registered for source %s', name)
        return None
    kwargs = {'fetch_config': fetch_config, 'session': session, 'sleep': sleep}
    if issubclass(scraper_cls, LoteriaDeHoyScraper):
        kwargs['archive_url'] = info.get('archive_url')
    return scraper_cls(info['url'], lottery, **kwargs)


def get_enabled_scrapers(
    lottery: LotteryConfig,
    fetch_config: FetchConfig | None = None,
    session=None,
    sleep: Callable[[float], None] = time.sleep,
) -> List[Tuple[str, BaseScraper]]:
    enabled = []
    for name, info in lottery.enabled_sources():
        scraper = build_scraper(name, info, lottery, fetch_config, session, sleep)
        if scraper:
            enabled.append((name, scraper))
    return enabled


def get_archive_scraper(
    lottery: LotteryConfig,
    fetch_config: FetchConfig | None = None,
    session=None,
    sleep: Callable[[float], None] = time.sleep,
) -> Optional[LoteriaDeHoyScraper]:
    for _, scraper in get_enabled_scrapers(lottery, fetch_config, session, sleep):
        if isinstance(scraper, LoteriaDeHoyScraper) and scraper.archive_url:
            return scraper
    return None


def fetch_today(
    lottery: LotteryConfig,
    fetch_config: FetchConfig | None = None,
    session=None,
    sleep: Callable[[float], None] = time.sleep,
) -> ExtractionResult:
    fetch_config = fetch_config or FetchConfig()
    enabled = get_enabled_scrapers(lottery, fetch_config, session, sleep)
    if not enabled:
        return ExtractionResult(sources=['No data sources configured'])

    deadline = Deadline(fetch_config.budget_seconds)
    diagnostics: List[str] = []
    for name, scraper in enabled:
        try:
            result = scraper.fetch_draws(deadline)
        except ScrapeError as exc:
            logger.warning('Source %s failed for %s: %s (%s)', name, lottery.key, exc, exc.detail)
            diagnostics.append(f"{scraper.label} - Failed ({exc.attempts} attempts)")
            continue
        if result.draws:
            return result
        diagnostics.append(f"{scraper.label} - No results")

    logger.error('All data sources failed for %s: %s', lottery.key, '; '.join(diagnostics))
    return ExtractionResult(sources=diagnostics)


def extract_today(
    lottery: LotteryConfig,
    cache: TimedCache,
    fetch_config: FetchConfig | None = None,
    session=None,
    sleep: Callable[[float], None] = time.sleep,
) -> ExtractionResult:
    cached = cache.get(lottery.key)
    result = None
    if cached is not None:
        try:
            result = ExtractionResult.from_dict(cached)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning('Discarding unreadable cached results for %s: %s', lottery.key, exc)
    if result is not None:
        result.sources = [f"{source} (cached)" for source in result.sources]
        logger.info('Using cached results for %s: %s draws', lottery.key, len(result.draws))
        return result

    result = fetch_today(lottery, fetch_config, session, sleep)
    if result.draws:
        cache.set(lottery.key, result.to_dict())
    return result
