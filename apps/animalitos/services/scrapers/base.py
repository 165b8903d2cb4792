from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import asdict, dataclass, field
from typing import Callable, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import quote

import requests
from bs4 import BeautifulSoup
from django.conf import settings

from ..catalog import ENTITIES, Entity, get_entity_by_code
from ..lottery_config import LotteryConfig
from ..resolver import resolve, strip_accents

DEFAULT_HEADERS = {
    'User-Agent': (
        'Mozilla/5.0 (Windows NT 10.0; Win64; x64) '
        'AppleWebKit/537.36 (KHTML, like Gecko) '
        'Chrome/120.0.0.0 Safari/537.36'
    ),
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
    'Accept-Language': 'es-ES,es;q=0.9,en;q=0.8',
    'Cache-Control': 'no-cache',
}

TIME_PATTERN = re.compile(r'(?<![\d:])(\d{1,2}):(\d{2})(?![\d:])(?:\s*([AaPp])\.?\s*[Mm]\.?(?![A-Za-z]))?')
DATE_LIKE_PATTERN = re.compile(r'(?<!\d)\d{1,4}[/-]\d{1,2}(?:[/-]\d{1,4})?(?!\d)')
ENTITY_NUMBER_PATTERN = re.compile(r'\b(\d{1,2})\b')
MIN_HTML_LENGTH = 100

logger = logging.getLogger('animalitos')


class ScrapeError(RuntimeError):
    def __init__(self, message: str, source: str, detail: str | None = None, attempts: int = 0):
        super().__init__(message)
        self.source = source
        self.detail = detail or ''
        self.attempts = attempts


@dataclass(frozen=True)
class ExtractedDraw:
    hour: str
    raw_token: str
    entity_id: Optional[str]
    is_completed: bool = True

    @classmethod
    def from_dict(cls, data: dict) -> 'ExtractedDraw':
        return cls(
            hour=data['hour'],
            raw_token=data.get('raw_token', ''),
            entity_id=data.get('entity_id'),
            is_completed=data.get('is_completed', True),
        )


@dataclass
class ExtractionResult:
    draws: List[ExtractedDraw] = field(default_factory=list)
    sources: List[str] = field(default_factory=list)
    source_name: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'draws': [asdict(draw) for draw in self.draws],
            'sources': list(self.sources),
            'source_name': self.source_name,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'ExtractionResult':
        return cls(
            draws=[ExtractedDraw.from_dict(item) for item in data.get('draws', [])],
            sources=list(data.get('sources', [])),
            source_name=data.get('source_name'),
        )


@dataclass(frozen=True)
class FetchConfig:
    proxies: Tuple[str, ...] = ()
    timeout: float = 15.0
    max_retries: int = 3
    backoff_seconds: float = 1.0
    budget_seconds: Optional[float] = 120.0
    proximity_window: int = 200

    @classmethod
    def from_settings(cls) -> 'FetchConfig':
        config = settings.ANIMALITOS_CONFIG
        return cls(
            proxies=tuple(config.get('PROXIES', ())),
            timeout=float(config.get('REQUEST_TIMEOUT', 15)),
            max_retries=max(1, int(config.get('MAX_RETRIES', 3))),
            backoff_seconds=float(config.get('BACKOFF_SECONDS', 1.0)),
            budget_seconds=config.get('FETCH_BUDGET_SECONDS', 120.0),
            proximity_window=int(config.get('PROXIMITY_WINDOW', 200)),
        )


class Deadline:
    """Caller-level time budget shared by every attempt of one extraction."""

    def __init__(self, seconds: Optional[float], clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self.expires_at = None if seconds is None else clock() + seconds

    def remaining(self) -> Optional[float]:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - self.clock())

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0


def to_24h(value: str) -> Optional[str]:
    match = TIME_PATTERN.search(value or '')
    if not match:
        return None
    hour, minute, meridiem = int(match.group(1)), int(match.group(2)), match.group(3)
    if meridiem:
        if not 1 <= hour <= 12:
            return None
        is_pm = meridiem.lower() == 'p'
        if is_pm and hour != 12:
            hour += 12
        elif not is_pm and hour == 12:
            hour = 0
    if hour > 23 or minute > 59:
        return None
    return f"{hour:02d}:{minute:02d}"


def proxied_url(proxy: str, url: str) -> str:
    return f"{proxy}{quote(url, safe='')}"


def _name_patterns(catalog: Sequence[Entity]) -> List[Tuple[Entity, re.Pattern]]:
    patterns = []
    for entity in catalog:
        variants = sorted({entity.name, strip_accents(entity.name)})
        alternation = '|'.join(re.escape(variant) for variant in variants)
        patterns.append((entity, re.compile(rf'\b(?:{alternation})\b', re.IGNORECASE)))
    return patterns


NAME_PATTERNS = _name_patterns(ENTITIES)


def _inside(position: int, spans: Iterable[Tuple[int, int]]) -> bool:
    return any(start <= position < end for start, end in spans)


def extract_by_proximity(section_html: str, window: int = 200) -> List[ExtractedDraw]:
    """Pair every time token with the nearest entity name or number in the text.

    Number tokens that are part of a time or a date are ignored. Times with no
    entity token closer than ``window`` characters are dropped.
    """
    text = BeautifulSoup(section_html, 'html.parser').get_text(' ')
    time_matches = list(TIME_PATTERN.finditer(text))
    blocked = [(m.start(), m.end()) for m in time_matches]
    blocked.extend((m.start(), m.end()) for m in DATE_LIKE_PATTERN.finditer(text))

    tokens: List[Tuple[int, Entity, str]] = []
    for entity, pattern in NAME_PATTERNS:
        for match in pattern.finditer(text):
            tokens.append((match.start(), entity, match.group(0)))
    for match in ENTITY_NUMBER_PATTERN.finditer(text):
        if _inside(match.start(), blocked):
            continue
        entity = get_entity_by_code(match.group(1))
        if entity:
            tokens.append((match.start(), entity, match.group(0)))
    tokens.sort(key=lambda token: token[0])

    draws: List[ExtractedDraw] = []
    for time_match in time_matches:
        hour = to_24h(time_match.group(0))
        if hour is None:
            continue
        closest = None
        closest_distance = window
        for position, entity, raw in tokens:
            distance = abs(position - time_match.start())
            if distance < closest_distance:
                closest = (entity, raw)
                closest_distance = distance
        if closest is None:
            logger.debug('No entity near time token %s', hour)
            continue
        entity, raw = closest
        logger.debug('Proximity match %s -> %s (distance %s)', hour, entity.name, closest_distance)
        draws.append(ExtractedDraw(hour=hour, raw_token=raw, entity_id=entity.id))
    return draws


def finalize_draws(draws: Iterable[ExtractedDraw]) -> List[ExtractedDraw]:
    seen = set()
    unique: List[ExtractedDraw] = []
    for draw in draws:
        key = (draw.hour, draw.entity_id or draw.raw_token.lower())
        if key in seen:
            continue
        seen.add(key)
        unique.append(draw)
    unique.sort(key=lambda draw: draw.hour)
    return unique


def build_draw(token: str, time_text: str) -> Optional[ExtractedDraw]:
    hour = to_24h(time_text)
    if hour is None:
        logger.debug('Unparseable time %r', time_text)
        return None
    entity = resolve(token)
    if entity is None:
        logger.warning('Entity not found for token %r at %s', token, hour)
    return ExtractedDraw(hour=hour, raw_token=token.strip(), entity_id=entity.id if entity else None)


class BaseScraper:
    name = 'base'
    label = 'Base'
    record_source = 'PrimarySource'

    def __init__(
        self,
        base_url: str,
        lottery: LotteryConfig,
        fetch_config: FetchConfig | None = None,
        session=None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = base_url
        self.lottery = lottery
        self.fetch_config = fetch_config or FetchConfig()
        self.session = session or requests.Session()
        self.sleep = sleep

    def fetch_draws(self, deadline: Deadline | None = None) -> ExtractionResult:
        html = self.fetch_html(self.base_url, deadline)
        draws = self.parse_draws(html)
        return ExtractionResult(
            draws=draws,
            sources=[f"{self.label} ({len(draws)} results)"],
            source_name=self.name,
        )

    def parse_draws(self, html: str) -> List[ExtractedDraw]:
        section = self.isolate_section(html)
        draws = self.parse_section(section)
        if not draws:
            logger.info('%s: no pattern matches for %s, trying proximity heuristic', self.name, self.lottery.key)
            draws = extract_by_proximity(section, window=self.fetch_config.proximity_window)
        if not draws:
            logger.info('%s: no data found for %s this cycle', self.name, self.lottery.key)
        return finalize_draws(draws)

    def isolate_section(self, html: str) -> str:
        return html

    def parse_section(self, section: str) -> List[ExtractedDraw]:
        raise NotImplementedError

    def fetch_html(self, url: str, deadline: Deadline | None = None) -> str:
        deadline = deadline or Deadline(self.fetch_config.budget_seconds)
        errors: List[str] = []
        for proxy in [*self.fetch_config.proxies, None]:
            if deadline.expired():
                errors.append('fetch budget exhausted')
                break
            try:
                return self._fetch_with_retries(url, proxy, deadline, errors)
            except ScrapeError:
                continue
        attempts = len(errors)
        logger.error('%s: all fetch attempts failed for %s (%s attempts)', self.name, url, attempts)
        raise ScrapeError('All fetch attempts failed', self.name, '; '.join(errors[-3:]), attempts=attempts)

    def _fetch_with_retries(self, url: str, proxy: str | None, deadline: Deadline, errors: List[str]) -> str:
        via = proxy or 'direct'
        retries = self.fetch_config.max_retries
        for attempt in range(retries):
            remaining = deadline.remaining()
            if remaining is not None and remaining <= 0:
                break
            timeout = self.fetch_config.timeout if remaining is None else min(self.fetch_config.timeout, remaining)
            try:
                return self._get(url, proxy, timeout)
            except ScrapeError as exc:
                errors.append(f"{via}: {exc} ({exc.detail})")
                logger.warning('%s attempt %s/%s via %s failed: %s (%s)', self.name, attempt + 1, retries, via, exc, exc.detail)
            if attempt < retries - 1:
                wait = self.fetch_config.backoff_seconds * (2 ** attempt)
                remaining = deadline.remaining()
                if remaining is not None:
                    wait = min(wait, remaining)
                if wait > 0:
                    self.sleep(wait)
        raise ScrapeError('Retries exhausted', self.name, via)

    def _get(self, url: str, proxy: str | None, timeout: float) -> str:
        target = proxied_url(proxy, url) if proxy else url
        logger.info('Fetching %s from %s', self.name, target)
        try:
            response = self.session.get(target, timeout=timeout, headers=DEFAULT_HEADERS)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise ScrapeError('Failed to fetch data', self.name, str(exc)) from exc
        html = self._unwrap(proxy, response)
        if len(html) < MIN_HTML_LENGTH:
            raise ScrapeError('Invalid HTML response', self.name, f'{len(html)} chars')
        return html

    def _unwrap(self, proxy: str | None, response) -> str:
        if proxy and 'allorigins' in proxy and '/get' in proxy:
            try:
                contents = json.loads(response.text).get('contents')
            except (ValueError, AttributeError) as exc:
                raise ScrapeError('Malformed proxy envelope', self.name, str(exc)) from exc
            if not contents:
                raise ScrapeError('Malformed proxy envelope', self.name, 'empty contents')
            return contents
        return response.text or ''
