from __future__ import annotations

from dataclasses import dataclass

from django.conf import settings


class UnknownLotteryError(ValueError):
    def __init__(self, lottery_id: str):
        super().__init__(f'Unknown lottery: {lottery_id}')
        self.lottery_id = lottery_id


@dataclass(frozen=True)
class LotteryConfig:
    key: str
    name: str
    section_marker: str
    data_sources: dict

    def enabled_sources(self) -> list[tuple[str, dict]]:
        enabled = [
            (name, info)
            for name, info in self.data_sources.items()
            if info.get('enabled', True)
        ]
        enabled.sort(key=lambda item: item[1].get('priority', 99))
        return enabled

    def archive_url(self) -> str | None:
        for _, info in self.enabled_sources():
            if info.get('archive_url'):
                return info['archive_url']
        return None


def get_lottery_config(lottery_id: str) -> LotteryConfig:
    lotteries = settings.ANIMALITOS_LOTTERIES
    if lottery_id not in lotteries:
        raise UnknownLotteryError(lottery_id)
    config = lotteries[lottery_id]
    return LotteryConfig(
        key=lottery_id,
        name=config.get('name', lottery_id),
        section_marker=config.get('section_marker', ''),
        data_sources=config.get('data_sources', {}),
    )


def get_supported_lotteries() -> list[LotteryConfig]:
    return [get_lottery_config(key) for key in settings.ANIMALITOS_LOTTERIES.keys()]


def default_lottery_id() -> str:
    lotteries = settings.ANIMALITOS_LOTTERIES
    return getattr(settings, 'ANIMALITOS_DEFAULT_LOTTERY', next(iter(lotteries)))
