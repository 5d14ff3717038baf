"""
api/sample_tests.py — demo assessment seeded into the repository at start-up
"""

from samajh_proctor.models.question_model import Assessment, Question

SAMPLE_TEST = Assessment(
    id="sample-python-basics",
    title="Python Basics",
    topic="Python",
    description="Short warm-up test covering core Python semantics.",
    duration_minutes=10,
    questions=[
        Question(
            id="py-1",
            text="What is the type of the expression `3 / 2` in Python 3?",
            options=["int", "float", "decimal.Decimal", "fractions.Fraction"],
            correct_answer=1,
            explanation="True division always returns a float in Python 3.",
            difficulty="easy",
        ),
        Question(
            id="py-2",
            text="Which built-in returns an iterator of (index, item) pairs?",
            options=["zip", "map", "enumerate", "range"],
            correct_answer=2,
            explanation="enumerate(iterable) yields (index, item) tuples.",
            difficulty="easy",
        ),
        Question(
            id="py-3",
            text="What does this print?",
            code_snippet="def f(x=[]):\n    x.append(1)\n    return len(x)\n\nf()\nprint(f())",
            options=["1", "2", "0", "TypeError"],
            correct_answer=1,
            explanation="The default list is created once and shared between calls.",
            difficulty="intermediate",
            type="output_prediction",
        ),
        Question(
            id="py-4",
            text="Which statement about the GIL in CPython is correct?",
            options=[
                "It prevents all concurrency",
                "Only one thread executes Python bytecode at a time",
                "It is released only when a thread exits",
                "It applies to multiprocessing workers as a whole",
            ],
            correct_answer=1,
            explanation="The GIL serialises bytecode execution; I/O and C extensions can release it.",
            difficulty="hard",
        ),
    ],
)

SAMPLE_TESTS = [SAMPLE_TEST]
