"""Static metadata describing the activity core."""

APP_NAME = "ActivityCore"
APP_VERSION = "0.1"
APP_LICENSE = "MIT License"
APP_ABOUT_TEXT = (
    "ActivityCore runs multiple-choice activities for students and records "
    "submissions for teachers to grade. Custom activities are scored on the "
    "spot; assigned activities are stored for review."
)
