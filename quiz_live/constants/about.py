"""Static metadata describing QuizLive."""

APP_NAME = "QuizLive"
APP_VERSION = "0.1"
APP_LICENSE = "MIT License"
APP_ABOUT_TEXT = (
    "QuizLive runs teacher-led live quiz sessions: the teacher launches questions "
    "one at a time, connected students answer in real time, and the server scores, "
    "reveals results and keeps a running total per participant."
)
