import os
from pathlib import Path

from dotenv import load_dotenv
from flask import Flask
from flask_cors import CORS

import database
from integrations.logging_config import get_logger

# Load .env from project root (parent directory)
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

logger = get_logger(__name__)

app = Flask(__name__)

# Get frontend URL from environment, default to localhost:5173
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

CORS(
    app,
    origins=[FRONTEND_URL, "http://127.0.0.1:5173"],
    supports_credentials=True,
)

app.config["SECRET_KEY"] = os.getenv("FLASK_SECRET_KEY", os.urandom(32).hex())

# Allow invoice uploads up to 16MB
app.config["MAX_CONTENT_LENGTH"] = 16 * 1024 * 1024

# ============================================================================
# REGISTER BLUEPRINTS
# ============================================================================

from routes.fulfillment import fulfillment_bp
from routes.health import health_bp
from routes.invoices import invoices_bp
from routes.mail import mail_bp

app.register_blueprint(health_bp)
app.register_blueprint(mail_bp)
app.register_blueprint(invoices_bp)
app.register_blueprint(fulfillment_bp)

# ============================================================================
# APPLICATION STARTUP
# ============================================================================

if __name__ == "__main__":
    database.init_db()

    logger.info("Reclaim backend starting on http://localhost:5000")
    app.run(debug=False, use_reloader=False, host="0.0.0.0", port=5000)
