"""Letter grades and the weighted grade combiner.

Both collaborators (astrological and questionnaire) report a letter grade. The
combiner maps each grade onto a fixed point scale and blends them 40/60 into a
single 0-100 compatibility score. Everything here is pure.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Union

ASTRO_WEIGHT = 0.4
QUESTIONNAIRE_WEIGHT = 0.6
MIN_SCORE = 0
MAX_SCORE = 100


class Grade(str, Enum):
	"""Closed set of grades, declared best first."""

	A = "A"
	A_MINUS = "A-"
	B_PLUS = "B+"
	B = "B"
	B_MINUS = "B-"
	C_PLUS = "C+"
	C = "C"
	C_MINUS = "C-"
	D = "D"
	F = "F"

	@property
	def points(self) -> int:
		return GRADE_POINTS[self]

	@property
	def rank(self) -> int:
		"""0 for the worst grade, increasing by one per step up."""
		return ASCENDING_GRADES.index(self)

	@classmethod
	def parse(cls, raw: Union["Grade", str, None]) -> "Grade":
		"""Parse a collaborator grade such as ``"b+"`` or ``" A "``.

		Modifiers the scale does not define collapse onto the bare letter
		(``A+`` is an ``A``, ``D-`` is a ``D``). ``None``, blanks and ``N/A``
		raise ``ValueError``.
		"""
		if isinstance(raw, Grade):
			return raw
		if raw is None:
			raise ValueError("grade is missing")
		text = str(raw).strip().upper()
		if not text or text == "N/A":
			raise ValueError("grade is missing")
		try:
			return cls(text)
		except ValueError:
			pass
		if len(text) == 2 and text[1] in "+-":
			try:
				return cls(text[0])
			except ValueError:
				pass
		raise ValueError(f"unknown grade: {raw!r}")


GRADE_POINTS: dict[Grade, int] = {
	Grade.A: 95,
	Grade.A_MINUS: 90,
	Grade.B_PLUS: 87,
	Grade.B: 83,
	Grade.B_MINUS: 80,
	Grade.C_PLUS: 77,
	Grade.C: 73,
	Grade.C_MINUS: 70,
	Grade.D: 60,
	Grade.F: 40,
}

ASCENDING_GRADES: tuple[Grade, ...] = tuple(sorted(GRADE_POINTS, key=GRADE_POINTS.__getitem__))


def round_half_up(value: float) -> int:
	return int(math.floor(value + 0.5))


def clamp_score(value: float) -> int:
	return max(MIN_SCORE, min(MAX_SCORE, round_half_up(value)))


def combine(astro_grade: Union[Grade, str], questionnaire_grade: Union[Grade, str]) -> int:
	"""Blend the two grades into a single score in [0, 100]."""
	astro = Grade.parse(astro_grade)
	questionnaire = Grade.parse(questionnaire_grade)
	raw = ASTRO_WEIGHT * astro.points + QUESTIONNAIRE_WEIGHT * questionnaire.points
	return clamp_score(raw)
