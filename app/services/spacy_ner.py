"""spaCy named-entity name detection for log redaction."""

from typing import Any, List, Optional

import spacy

from app.core.config import settings
from app.core.logging import setup_logger

logger = setup_logger(__name__)

PERSON_LABEL = "PERSON"
# Slices stay far below nlp.max_length
MAX_TEXT_CHARS = 100_000


class SpacyNameDetector:
    """
    Name detector backed by a spaCy NER pipeline.

    The pipeline is loaded on first use. When the configured model package is
    not installed, detection is delegated to ``fallback`` (if any).
    """

    def __init__(
        self,
        nlp: Any = None,
        model: Optional[str] = None,
        fallback: Any = None,
    ) -> None:
        self.model = model or settings.SPACY_MODEL
        self.fallback = fallback
        self._nlp = nlp
        self._model_missing = False

    @property
    def nlp(self) -> Any:
        """Lazy-load the spaCy pipeline."""
        if self._nlp is None and not self._model_missing:
            try:
                self._nlp = spacy.load(self.model)
                logger.info(f"spaCy model '{self.model}' loaded for name detection")
            except OSError:
                logger.warning(
                    f"spaCy model '{self.model}' not found, "
                    f"run `python -m spacy download {self.model}`"
                )
                self._model_missing = True
        return self._nlp

    def detect(self, text: str) -> List[str]:
        """
        Detect person names in a piece of text.

        Args:
            text: Text to scan

        Returns:
            Distinct PERSON entity texts in order of appearance
        """
        if not text.strip():
            return []

        nlp = self.nlp
        if nlp is None:
            return self.fallback.detect(text) if self.fallback is not None else []

        names: List[str] = []
        for start in range(0, len(text), MAX_TEXT_CHARS):
            doc = nlp(text[start : start + MAX_TEXT_CHARS])
            for ent in doc.ents:
                if ent.label_ != PERSON_LABEL:
                    continue
                name = ent.text.strip()
                if len(name) > 1 and name not in names:
                    names.append(name)

        logger.debug(f"spaCy detected {len(names)} person names")
        return names
