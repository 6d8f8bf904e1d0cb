"""Season configuration parsing: durations, turn patterns and timeouts."""

import re
from typing import List, NamedTuple, Optional

from flask import current_app

from turnrelay.errors import ValidationError
from turnrelay.models import TurnType

# Units must appear in d-h-m-s order, each at most once
_DURATION_RE = re.compile(r'^(?:(\d+)d)?(?:(\d+)h)?(?:(\d+)m)?(?:(\d+)s)?$')


class Timeouts(NamedTuple):
    claim_minutes: int
    writing_minutes: int
    drawing_minutes: int

    def submission_minutes(self, turn_type: str) -> int:
        return self.writing_minutes if turn_type == TurnType.WRITING else self.drawing_minutes


def parse_duration_minutes(value: Optional[str]) -> Optional[int]:
    """Parse "7d", "2h30m", "90m" or "45s" into whole minutes (rounded).

    Returns None for anything unparsable, including the empty string.
    """
    if value is None:
        return None
    text = re.sub(r'\s+', '', str(value))
    if not text:
        return None
    match = _DURATION_RE.match(text)
    if not match or not any(match.groups()):
        return None
    d, h, m, s = (int(g) if g else 0 for g in match.groups())
    return round(d * 1440 + h * 60 + m + s / 60)


def parse_turn_pattern(value) -> List[str]:
    """Parse "writing,drawing" into [WRITING, DRAWING]; raises ValidationError."""
    if not isinstance(value, str):
        raise ValidationError(f"Turn pattern must be a string, received {type(value).__name__}")
    if not value.strip():
        raise ValidationError('Turn pattern cannot be empty')
    parts = [part.strip().lower() for part in value.split(',')]
    pattern = []
    for position, part in enumerate(parts, start=1):
        if not part:
            raise ValidationError('Turn pattern contains empty values')
        if part not in ('writing', 'drawing'):
            raise ValidationError(f"Invalid turn type '{part}' at position {position}")
        pattern.append(part.upper())
    return pattern


def turn_type_for(pattern: List[str], turn_number: int) -> str:
    return pattern[(turn_number - 1) % len(pattern)]


def validate_duration(value: Optional[str], field: str) -> Optional[str]:
    if value is None:
        return None
    minutes = parse_duration_minutes(value)
    if minutes is None or minutes <= 0:
        raise ValidationError(f"Invalid {field} duration '{value}'")
    return value


def _first_positive(field, candidates, default):
    for source, raw in candidates:
        if raw is None:
            continue
        minutes = parse_duration_minutes(raw)
        if minutes and minutes > 0:
            return minutes
        current_app.logger.warning(f"[config] invalid {field} '{raw}' on {source}, falling back")
    return default


def resolve_timeouts(game) -> Timeouts:
    """Timeouts for a game: game override, then season config, then app defaults."""
    config = current_app.config
    season = game.season
    return Timeouts(
        claim_minutes=_first_positive(
            'claim_timeout',
            [('game', game.claim_timeout), ('season', season.claim_timeout if season else None)],
            int(config.get('CLAIM_TIMEOUT_MINUTES', 1440)),
        ),
        writing_minutes=_first_positive(
            'writing_timeout',
            [('game', game.writing_timeout), ('season', season.writing_timeout if season else None)],
            int(config.get('WRITING_TIMEOUT_MINUTES', 1440)),
        ),
        drawing_minutes=_first_positive(
            'drawing_timeout',
            [('game', game.drawing_timeout), ('season', season.drawing_timeout if season else None)],
            int(config.get('DRAWING_TIMEOUT_MINUTES', 4320)),
        ),
    )
