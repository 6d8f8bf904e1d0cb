from dataclasses import dataclass
from typing import Any, Optional

from turnrelay.errors import TurnRelayError


@dataclass
class EngineResult:
    """Outcome of a public engine call: a value on success, an error otherwise."""

    success: bool
    value: Any = None
    error: Optional[TurnRelayError] = None

    @classmethod
    def ok(cls, value=None):
        return cls(True, value=value)

    @classmethod
    def fail(cls, error: TurnRelayError):
        return cls(False, error=error)

    @property
    def code(self) -> Optional[str]:
        return self.error.code if self.error else None

    def to_dict(self):
        value = self.value
        if hasattr(value, 'to_dict'):
            value = value.to_dict()
        data = {'success': self.success, 'value': value}
        if self.error is not None:
            data['error'] = {'code': self.error.code, 'message': str(self.error)}
        return data
