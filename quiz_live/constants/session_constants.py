"""Session-related constants shared by the engine and the API layer."""

DEFAULT_DURATION_SECONDS: int = 30
DEFAULT_POINTS: int = 100

PARTICIPANT_MIN_PERSIST_MS: int = 5000
PARTICIPANT_MIN_BROADCAST_MS: int = 2000

DEFAULT_DISPLAY_NAME_PREFIX: str = "Alumno-"
DISPLAY_NAME_SESSION_CHARS: int = 5

CLASS_CODE_LENGTH: int = 6
CHALLENGE_ID_PREFIX: str = "c-"
GAME_ENDED_TYPE: str = "game-ended"
GAME_ENDED_ID_SUFFIX: str = ":game-ended"

PODIUM_SIZE: int = 3
EVALUATION_UNAVAILABLE_FEEDBACK: str = "unavailable"
