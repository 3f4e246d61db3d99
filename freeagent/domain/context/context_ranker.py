from typing import Set
import re


class ContextRanker:
    """Scores textual overlap between context elements"""

    def __init__(self):
        pass

    @staticmethod
    def normalize(text: str) -> str:
        """Lowercase and collapse whitespace"""

        return " ".join(text.lower().split())

    @staticmethod
    def words(text: str) -> Set[str]:
        return set(re.findall(r'\w+', text.lower()))

    def calculate_overlap(self, first: str, second: str) -> float:
        """Jaccard overlap of the two texts' word sets"""

        if self.normalize(first) == self.normalize(second):
            return 1.0

        first_words = self.words(first)
        second_words = self.words(second)

        if not first_words or not second_words:
            return 0.0

        overlap = len(first_words & second_words)
        return overlap / len(first_words | second_words)
