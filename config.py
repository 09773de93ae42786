import os

SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))

# Storage

# Per-user collection data lives in DATA_ROOT/<username>/
DATA_ROOT = os.getenv('CARDWISE_DATA_ROOT', os.path.join(SCRIPT_DIR, "data"))
USERS_YAML = os.getenv('CARDWISE_USERS_YAML', os.path.join(SCRIPT_DIR, "users.yaml"))
SETTINGS_YAML = os.getenv('CARDWISE_SETTINGS_YAML', os.path.join(DATA_ROOT, "settings.yaml"))

# Ollama image tagging

OLLAMA_HOST = os.getenv('OLLAMA_HOST', 'http://localhost:11434')
OLLAMA_MODEL = os.getenv('OLLAMA_MODEL', 'llava:latest')

# Seconds to wait for a single /api/generate call
OLLAMA_TIMEOUT = float(os.getenv('OLLAMA_TIMEOUT', 60))

# Seconds to wait for the /api/tags connection check
OLLAMA_CONNECT_TIMEOUT = float(os.getenv('OLLAMA_CONNECT_TIMEOUT', 5))

# Scanned cards below this confidence are not added to the collection
DEFAULT_CONFIDENCE_THRESHOLD = float(os.getenv('CARDWISE_CONFIDENCE_THRESHOLD', 0.8))

# Auth

JWT_SECRET = os.getenv('JWT_SECRET', 'dev-secret-change-in-prod')
JWT_EXPIRY_H = int(os.getenv('JWT_EXPIRY_H', 24))

ADMIN_USERNAME = 'admin'
ADMIN_EMAIL = os.getenv('CARDWISE_ADMIN_EMAIL', 'admin@cardwise.com')
ADMIN_PASSWORD = os.getenv('CARDWISE_ADMIN_PASSWORD', 'admin123')

# Server

SEED_ON_STARTUP = os.getenv('CARDWISE_SEED_ON_STARTUP', 'true').lower() == 'true'
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
CORS_ORIGINS = [
    o.strip() for o in os.getenv(
        'CARDWISE_CORS_ORIGINS',
        'http://localhost:5173,http://localhost:4173,http://localhost:3000',
    ).split(',') if o.strip()
]
