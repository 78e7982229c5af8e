from dotenv import load_dotenv
import os

load_dotenv()

# -------- Core --------
PORT = int(os.getenv("PORT", "8000"))
ENV_NAME = os.getenv("ENV_NAME", "staging")

ALLOWED_ORIGINS = [s.strip() for s in os.getenv("ALLOWED_ORIGINS", "*").split(",")]
LOG_LEVEL = os.getenv("LOG_LEVEL", "info")

# -------- Auth --------
API_KEY = os.getenv("API_KEY", "").strip()
DEMO_MODE = os.getenv("DEMO_MODE", "false").lower() in ("1", "true", "yes")

# -------- Synthesis --------
CONFIDENCE_START = float(os.getenv("CONFIDENCE_START", "0.99"))
CONFIDENCE_DECAY = float(os.getenv("CONFIDENCE_DECAY", "0.03"))    # per action in the sequence
RATIONALE_MAX_SOURCES = int(os.getenv("RATIONALE_MAX_SOURCES", "3"))

# -------- Policy --------
APPROVAL_RATIO = float(os.getenv("APPROVAL_RATIO", "0.6"))          # share of playbooks needing sign-off
CONCURRENCY_CAP = int(os.getenv("CONCURRENCY_CAP", "8"))            # hard ceiling for executor hand-off
MINUTES_PER_SLOT = int(os.getenv("MINUTES_PER_SLOT", "5"))          # wall-clock minutes per parallel slot

# -------- Simulation --------
PENDING_RISK_WEIGHT = float(os.getenv("PENDING_RISK_WEIGHT", "0.6"))
