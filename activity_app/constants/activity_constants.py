"""Activity and grading constants shared across core and API layers."""

CHOICE_LETTERS: str = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
STORED_OPTION_LETTERS: tuple[str, ...] = ("A", "B", "C", "D")
MIN_CHOICES: int = 2

STATUS_PENDING: str = "pending"
STATUS_GRADED: str = "graded"

TABLE_ACTIVITIES: str = "activities"
TABLE_ACTIVITY_QUESTIONS: str = "activity_questions"
TABLE_QUESTIONS: str = "questions"
TABLE_SUBMISSIONS: str = "activity_submissions"
TABLE_STUDENT_ANSWERS: str = "student_answers"
TABLE_SUBJECTS: str = "subjects"

MAX_SCORE: float = 100.0
TEACHER_FORM_SCALE: int = 10

ROLE_TEACHER: str = "teacher"

MIN_CUSTOM_QUESTIONS: int = 1
MAX_CUSTOM_QUESTIONS: int = 30
DEFAULT_CUSTOM_QUESTIONS: int = 5

CUSTOM_ACTIVITY_SUBJECTS: dict[str, str] = {
    "matematica": "Matemática",
    "portugues": "Português",
    "ciencias": "Ciências",
    "historia": "História",
    "geografia": "Geografia",
    "ingles": "Inglês",
}
