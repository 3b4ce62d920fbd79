"""An OpenAI-compatible gateway in front of a streaming upstream chat service."""

__version__ = "0.1.0"

from .config import Settings, load_settings
from .api import create_app
from .utils import ThinkTagsMode, transform_thinking

from .events import UpstreamEvent, decode_line
from .credentials import Credential, CredentialSource, acquire_credential
from .streaming import StreamRelay, stream_with_role, collect_content
