"""Message and event names used on the realtime wire protocol."""

# Client -> server
MSG_SUBSCRIBE: str = "subscribe"
MSG_UNSUBSCRIBE: str = "unsubscribe"
MSG_PING: str = "ping"
MSG_ANSWER: str = "answer"
MSG_REVEAL: str = "reveal"

# Server -> client
EVT_SUBSCRIBED: str = "subscribed"
EVT_QUESTION_LAUNCHED: str = "question-launched"
EVT_ANSWERS_COUNT: str = "answers-count"
EVT_ANSWERS_UPDATED: str = "answers-updated"
EVT_QUESTION_RESULTS: str = "question-results"
EVT_PARTICIPANTS_UPDATED: str = "participants-updated"
EVT_PARTICIPANT_HEARTBEAT: str = "participant-heartbeat"
EVT_PARTICIPANT_DISCONNECTED: str = "participant-disconnected"
EVT_ANSWER_EVALUATED: str = "answer-evaluated"
EVT_CLASS_RESET: str = "class-reset"
EVT_ERROR: str = "error"

ROLE_STUDENT: str = "student"
ROLE_TEACHER: str = "teacher"

FORBIDDEN_MESSAGE: str = "forbidden"
