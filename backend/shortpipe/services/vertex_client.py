"""Vertex AI client construction using the google-genai SDK.

Authentication is handled via Application Default Credentials (ADC). Each
process entry point builds one client and passes it to the stages.

Usage:
    from shortpipe.services.vertex_client import create_vertex_client

    client = create_vertex_client()
"""

import os
from typing import Optional

from dotenv import load_dotenv
from google import genai

from shortpipe.config import settings

# Load .env for GOOGLE_APPLICATION_CREDENTIALS (ADC)
load_dotenv()


def create_vertex_client(
    project_id: Optional[str] = None,
    location: Optional[str] = None,
) -> genai.Client:
    """Create a Vertex AI client.

    Args:
        project_id: GCP project. Defaults to settings.providers.google_project_id.
        location: GCP region. Defaults to settings.providers.google_location.

    Returns:
        genai.Client: Configured client instance for Vertex AI
    """
    project = project_id or settings.providers.google_project_id or os.environ.get("GOOGLE_CLOUD_PROJECT")
    loc = location or settings.providers.google_location
    return genai.Client(vertexai=True, project=project, location=loc)
