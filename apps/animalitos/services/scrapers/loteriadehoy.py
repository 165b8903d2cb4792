from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import List, Optional

from bs4 import BeautifulSoup
from dateutil import parser as date_parser

from .base import BaseScraper, Deadline, ExtractedDraw, TIME_PATTERN, build_draw, logger, to_24h


@dataclass(frozen=True)
class ArchiveRow:
    date: str
    hour: str
    code: str
    name: str


class LoteriaDeHoyScraper(BaseScraper):
    name = 'loteriadehoy'
    label = 'Lotería de Hoy'
    record_source = 'SecondarySource'

    def __init__(self, base_url: str, lottery, archive_url: str | None = None, **kwargs):
        super().__init__(base_url, lottery, **kwargs)
        self.archive_url = archive_url

    def parse_section(self, section: str) -> List[ExtractedDraw]:
        soup = BeautifulSoup(section, 'html.parser')
        draws: List[ExtractedDraw] = []

        for hour_cell in soup.select('td.hora'):
            animal_cell = hour_cell.find_next_sibling('td', class_='animal')
            if animal_cell is None:
                continue
            draw = build_draw(animal_cell.get_text(' ', strip=True), hour_cell.get_text(strip=True))
            if draw:
                draws.append(draw)

        for card in soup.select('div.resultado'):
            text = card.get_text(' ', strip=True)
            time_match = TIME_PATTERN.search(text)
            if not time_match:
                continue
            token = text[time_match.end():].strip() or text[:time_match.start()].strip()
            if not token:
                continue
            draw = build_draw(token, time_match.group(0))
            if draw:
                draws.append(draw)

        return draws

    def fetch_archive_page(self, page: int, deadline: Deadline | None = None) -> List[ArchiveRow]:
        if not self.archive_url:
            return []
        html = self.fetch_html(f"{self.archive_url}?page={page}", deadline)
        return self.parse_archive(html)

    def parse_archive(self, html: str) -> List[ArchiveRow]:
        soup = BeautifulSoup(html, 'html.parser')
        rows = soup.select('table tbody tr') or soup.select('tr')
        results: List[ArchiveRow] = []
        for row in rows:
            cols = [cell.get_text(' ', strip=True) for cell in row.find_all('td')]
            if len(cols) < 4:
                continue
            draw_date = self._parse_date(cols[0])
            hour = to_24h(cols[1])
            if not draw_date or not hour or not (cols[2] or cols[3]):
                continue
            results.append(ArchiveRow(date=draw_date.isoformat(), hour=hour, code=cols[2], name=cols[3]))
        return results

    def _parse_date(self, text: str) -> Optional[date]:
        try:
            return date_parser.parse(text, dayfirst=True, fuzzy=True).date()
        except (ValueError, TypeError, OverflowError) as exc:
            logger.debug('Failed to parse date from %s: %s', text, exc)
            return None
