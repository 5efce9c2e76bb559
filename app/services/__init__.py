"""Business logic services."""

from .model import model_service
from .redaction import pii_redactor
from .session_turns import active_streams
