import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./parking.db")
DATABASE_ECHO = os.getenv("DATABASE_ECHO", "false").lower() == "true"

USER_SERVICE_URL = os.getenv("USER_SERVICE_URL", "http://localhost:8003")
USER_SERVICE_TIMEOUT = float(os.getenv("USER_SERVICE_TIMEOUT", "5"))

PARKING_SERVICE_PORT = int(os.getenv("PARKING_SERVICE_PORT", "8002"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Open-ended reservations are stored with an end this far after their start.
OPEN_ENDED_RESERVATION_YEARS = 100
MIN_PLATE_LENGTH = 2
DEFAULT_PAYMENT_METHOD = "cash"
DEFAULT_VEHICLE_TYPE = "car"
