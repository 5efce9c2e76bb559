"""AWS Comprehend name detection for log redaction."""

from typing import List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import settings
from app.core.exceptions import ChatPipelineException
from app.core.logging import setup_logger

logger = setup_logger(__name__)

# Constants
LANGUAGE_CODE = "en"
PERSON_ENTITY = "PERSON"
# DetectEntities rejects documents above 100KB of UTF-8
MAX_TEXT_BYTES = 100_000


class ComprehendNameDetector:
    """Name detector backed by AWS Comprehend entity recognition."""

    def __init__(self, client=None, threshold: Optional[float] = None) -> None:
        """Initialize Comprehend client."""
        self.client = client or boto3.client(
            "comprehend", region_name=settings.COMPREHEND_REGION
        )
        self.threshold = (
            settings.COMPREHEND_THRESHOLD if threshold is None else threshold
        )

    def detect(self, text: str) -> List[str]:
        """
        Detect person names in a piece of text.

        Args:
            text: Text to scan

        Returns:
            Distinct PERSON entity texts scoring at or above the threshold

        Raises:
            ChatPipelineException: If the Comprehend call fails
        """
        if not text.strip():
            return []

        encoded = text.encode("utf-8")
        if len(encoded) > MAX_TEXT_BYTES:
            text = encoded[:MAX_TEXT_BYTES].decode("utf-8", errors="ignore")

        try:
            response = self.client.detect_entities(Text=text, LanguageCode=LANGUAGE_CODE)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"AWS Comprehend error: {str(e)}")
            raise ChatPipelineException(f"Comprehend service error: {str(e)}")

        names: List[str] = []
        for entity in response.get("Entities", []):
            if entity.get("Type") != PERSON_ENTITY:
                continue
            if entity.get("Score", 0) < self.threshold:
                continue
            name = entity.get("Text", "").strip()
            if name and name not in names:
                names.append(name)

        logger.debug(f"Comprehend detected {len(names)} person names")
        return names
