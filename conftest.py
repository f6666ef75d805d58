"""Global pytest configuration."""

import os

# Never reach the real generative service from tests
os.environ["OPENAI_API_KEY"] = ""
