from __future__ import annotations

import re
from typing import List

from .base import BaseScraper, ExtractedDraw, build_draw, logger

RESULT_PATTERN = re.compile(
    r'<span class="info(?:\s[^"]*)?">([^<]+)</span>[\s\S]*?'
    r'<span class="info2 horario"[^>]*>(\d{1,2}:\d{2}\s*(?:AM|PM))</span>',
    re.IGNORECASE,
)


class LotoVenScraper(BaseScraper):
    name = 'lotoven'
    label = 'LotoVen'
    record_source = 'PrimarySource'

    def isolate_section(self, html: str) -> str:
        marker = self.lottery.section_marker
        if not marker:
            return html
        pattern = re.compile(
            rf'<h3[^>]*>\s*{re.escape(marker)}\s*</h3>([\s\S]*?)(?=<h3|$)',
            re.IGNORECASE,
        )
        match = pattern.search(html)
        if not match:
            logger.info('LotoVen section %r not found, scanning whole page', marker)
            return html
        return match.group(1)

    def parse_section(self, section: str) -> List[ExtractedDraw]:
        draws: List[ExtractedDraw] = []
        for match in RESULT_PATTERN.finditer(section):
            draw = build_draw(match.group(1), match.group(2))
            if draw:
                draws.append(draw)
        return draws
