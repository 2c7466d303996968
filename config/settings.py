"""
StackSafe Engine - Configuration Settings
"""
import os
from pathlib import Path

# Base paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = BASE_DIR / "stacksafe" / "data"

# Knowledge base
KNOWLEDGE_BASE_PATH = os.getenv(
    "STACKSAFE_KNOWLEDGE_BASE", str(DATA_DIR / "knowledge_base.json")
)

# Nutrient warnings are emitted when a total is strictly above this share of the UL
NUTRIENT_WARNING_THRESHOLD_PERCENT = float(
    os.getenv("NUTRIENT_WARNING_THRESHOLD_PERCENT", "100")
)

# API Settings
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))
API_TITLE = "StackSafe Interaction & Safety Engine"
API_VERSION = "1.0.0"

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Feature Flags
ENABLE_TIMING_GUIDANCE = os.getenv("ENABLE_TIMING_GUIDANCE", "true").lower() == "true"
