"""
Engine exception hierarchy.

Managers raise these; the Engine facade turns them into EngineResult values
and the HTTP layer maps each ``code`` to a status.
"""


class TurnRelayError(Exception):
    """Base class for every engine error."""
    code = 'error'


class NotFoundError(TurnRelayError):
    code = 'not_found'

    def __init__(self, kind, ident):
        self.kind = kind
        self.ident = ident
        super().__init__(f"{kind} {ident} not found")


class InvalidStateError(TurnRelayError):
    """A transition precondition did not hold, including lost races."""
    code = 'invalid_state'

    def __init__(self, message, current_status=None):
        self.current_status = current_status
        super().__init__(message)


class ValidationError(TurnRelayError):
    """Bad submission content, content type or configuration value."""
    code = 'validation'


class NoEligiblePlayersError(TurnRelayError):
    code = 'no_eligible_players'

    def __init__(self, game_id, turn_type):
        self.game_id = game_id
        self.turn_type = turn_type
        super().__init__(f"No eligible players for {turn_type} turn in game {game_id}")


class SchedulingError(TurnRelayError):
    """Persisting or arming a timer failed."""
    code = 'scheduling'


HTTP_STATUS = {
    NotFoundError.code: 404,
    InvalidStateError.code: 409,
    ValidationError.code: 400,
    NoEligiblePlayersError.code: 409,
    SchedulingError.code: 503,
}
